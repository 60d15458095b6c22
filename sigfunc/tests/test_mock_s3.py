import pytest
import io
import json
import logging
import datetime
import uuid
import boto3
import urllib3
from moto.server import ThreadedMotoServer
from sigfunc import s3, signer


@pytest.fixture(scope="module")
def s3_server():
    server = ThreadedMotoServer(port=5000)
    server.start()
    yield "http://localhost:5000"
    server.stop()


@pytest.fixture
def s3_session(s3_server):
    access_key_id = "testing"
    access_key = "testing"
    bucket_name = "test-bucket"
    endpoint_url = s3_server

    # Create the bucket in the mock server using boto3
    s3_client = boto3.client(
        "s3", endpoint_url=endpoint_url, aws_access_key_id=access_key_id, aws_secret_access_key=access_key, region_name="us-east-1"
    )
    s3_client.create_bucket(Bucket=bucket_name)
    s3_client.put_bucket_versioning(Bucket=bucket_name, VersioningConfiguration={'Status': 'Enabled'})

    session = s3.S3Session(access_key_id, access_key, bucket_name, endpoint_url=endpoint_url)
    return session


def test_mock_s3_put_get_object(s3_session):
    key = "test-key"
    data = b"hello world"

    resp = s3_session.put_object(key, data)
    assert resp.metadata['status'] == 200
    assert resp.error is None

    resp = s3_session.get_object(key)
    assert resp.metadata['status'] == 200
    assert resp.stream.read() == data


def test_mock_s3_put_file_object(s3_session):
    key = f"file-key-{uuid.uuid4().hex}"
    data = b"file data " * 1000
    f = io.BytesIO(data)

    resp = s3_session.put_object(key, f, metadata={'title': 'report'}, content_type='text/plain')
    assert resp.metadata['status'] == 200

    resp = s3_session.head_object(key)
    assert resp.metadata['content_length'] == len(data)
    assert resp.metadata['title'] == 'report'
    assert resp.metadata['content_type'] == 'text/plain'


def test_mock_s3_special_characters_in_key(s3_session):
    key = "docs/my report (1)!.txt"
    data = b"special"
    s3_session.put_object(key, data)

    resp = s3_session.get_object(key)
    assert resp.stream.read() == data


def test_mock_s3_get_range(s3_session):
    key = f"range-key-{uuid.uuid4().hex}"
    s3_session.put_object(key, b"0123456789")

    resp = s3_session.get_object(key, range_start=2, range_end=4)
    assert resp.stream.read() == b"234"


def test_mock_s3_list_objects(s3_session):
    key = f"list-test-key-{uuid.uuid4().hex}"
    s3_session.put_object(key, b"list data")

    resp = s3_session.list_objects(prefix="list-test-key-")
    assert resp.metadata['status'] == 200
    assert key.encode() in resp.data


def test_mock_s3_head_object(s3_session):
    key = "head-key"
    s3_session.put_object(key, b"head data")

    resp = s3_session.head_object(key)
    assert resp.metadata['status'] == 200
    assert 'version_id' in resp.metadata


def test_mock_s3_copy_object(s3_session):
    src_key = "src key"
    dest_key = "dest-key"
    data = b"copy data"
    s3_session.put_object(src_key, data)

    resp = s3_session.copy_object(src_key, dest_key)
    assert resp.metadata['status'] == 200

    resp = s3_session.get_object(dest_key)
    assert resp.stream.read() == data


def test_mock_s3_delete_object(s3_session):
    key = f"delete-test-key-{uuid.uuid4().hex}"
    s3_session.put_object(key, b"delete me")

    resp = s3_session.delete_object(key)
    assert resp.metadata['status'] == 204

    resp = s3_session.list_objects(prefix=key)
    assert key.encode() not in resp.data


def test_mock_s3_missing_object(s3_session):
    resp = s3_session.get_object(f"missing-{uuid.uuid4().hex}")

    assert resp.status == 404
    assert resp.error['code'] == 'NoSuchKey'
    with pytest.raises(urllib3.exceptions.HTTPError):
        resp.raise_for_status()


def test_mock_s3_presigned_url(s3_session):
    key = "presigned-key"
    data = b"presigned data"
    s3_session.put_object(key, data)

    url = s3_session.presigned_url(key, expires=300)
    assert 'X-Amz-Signature=' in url
    assert 'X-Amz-Expires=300' in url

    resp = urllib3.request('GET', url)
    assert resp.status == 200
    assert resp.data == data


def test_mock_s3_presigned_put_url(s3_session):
    key = "presigned-upload"
    data = b"uploaded through a presigned url"

    url = s3_session.presigned_url(key, method='PUT')
    resp = urllib3.request('PUT', url, body=data)
    assert resp.status == 200

    resp = s3_session.get_object(key)
    assert resp.stream.read() == data


def test_bad_metadata(s3_session):
    with pytest.raises(TypeError):
        s3_session.put_object("meta-key", b"x", metadata={'n': 1})
    with pytest.raises(ValueError):
        s3_session.put_object("meta-key", b"x", metadata={'big': 'x' * 3000})


def test_bad_object_type(s3_session):
    with pytest.raises(TypeError):
        s3_session.put_object("obj-key", "a str is not bytes")


################################################
### Signature checked by the server


def reset_auth(endpoint_url, count):
    """
    Set how many more requests moto serves before it verifies signatures and IAM permissions.
    """
    resp = urllib3.request('POST', f'{endpoint_url}/moto-api/reset-auth', body=str(count).encode())
    assert resp.status == 200


@pytest.fixture
def iam_keys(s3_server, s3_session):
    iam = boto3.client(
        "iam", endpoint_url=s3_server, aws_access_key_id="testing", aws_secret_access_key="testing", region_name="us-east-1"
    )
    user_name = f"signer-{uuid.uuid4().hex[:8]}"
    iam.create_user(UserName=user_name)
    iam.put_user_policy(
        UserName=user_name,
        PolicyName="s3-access",
        PolicyDocument=json.dumps({
            "Version": "2012-10-17",
            "Statement": [{"Effect": "Allow", "Action": "s3:*", "Resource": "*"}],
            }),
        )
    key = iam.create_access_key(UserName=user_name)['AccessKey']

    reset_auth(s3_server, 0)
    yield key['AccessKeyId'], key['SecretAccessKey']
    reset_auth(s3_server, 'inf')


def test_mock_s3_signature_accepted(s3_server, iam_keys):
    access_key_id, access_key = iam_keys
    session = s3.S3Session(access_key_id, access_key, "test-bucket", endpoint_url=s3_server)

    key = f"signed-{uuid.uuid4().hex}"
    resp = session.put_object(key, b"checked by the server")
    assert resp.status == 200

    resp = session.get_object(key, range_start=0, range_end=6)
    assert resp.status == 206
    assert resp.stream.read() == b"checked"


def test_mock_s3_signature_rejected(s3_server, iam_keys, caplog):
    access_key_id, _ = iam_keys
    session = s3.S3Session(access_key_id, "not-the-secret", "test-bucket", endpoint_url=s3_server)

    with caplog.at_level(logging.WARNING, logger='sigfunc.response'):
        resp = session.put_object("rejected", b"x")

    assert resp.status == 403
    assert resp.error['code'] == 'SignatureDoesNotMatch'
    assert 'signature' in caplog.text


################################################
### Request paths


class RecordingPool:
    def __init__(self):
        self.requests = []

    def request(self, method, url, headers=None, body=None, preload_content=True):
        self.requests.append({'method': method, 'url': url, 'headers': dict(headers)})
        return FakeResponse()


class FakeResponse:
    status = 200
    headers = {}
    data = b''


@pytest.fixture
def recorded(monkeypatch):
    pool = RecordingPool()
    monkeypatch.setattr(s3.http_url, 'session', lambda *args, **kwargs: pool)
    monkeypatch.delenv('AWS_SESSION_TOKEN', raising=False)
    session = s3.S3Session("testing", "testing", "test-bucket", region="us-east-1")
    return session, pool


@pytest.mark.parametrize('key', ['reports/../2024/./q1.txt', '..', './notes', 'a/b/..'])
def test_dot_segment_key_sent_as_signed(recorded, key):
    session, pool = recorded
    session.get_object(key)
    req = pool.requests[0]

    # urllib3 sends the request_uri of the parsed url, after its dot segment removal
    sent_path = urllib3.util.parse_url(req['url']).path
    signed = signer.sign(signer.SignRequest(
        'GET',
        req['url'],
        region='us-east-1',
        service='s3',
        access_key_id='testing',
        secret_access_key='testing',
        timestamp=datetime.datetime.strptime(req['headers']['X-Amz-Date'], '%Y%m%dT%H%M%SZ'),
        ))

    assert signer.canonical_uri(sent_path) == '/' + key
    assert req['headers']['Authorization'] == signed.authorization


def test_presign_log_has_no_query(recorded, caplog):
    session, _ = recorded

    with caplog.at_level(logging.DEBUG, logger='sigfunc.s3'):
        url = session.presigned_url("report.pdf", version_id="v123")

    messages = [r.getMessage() for r in caplog.records if r.name == 'sigfunc.s3']

    assert 'versionId=v123' in url
    assert messages == ['Presigning GET https://test-bucket.s3.us-east-1.amazonaws.com/report.pdf']
