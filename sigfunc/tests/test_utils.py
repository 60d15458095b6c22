import pytest

from sigfunc import utils

#################################################
### Parameters

env_vars = ('AWS_ACCESS_KEY_ID', 'AWS_SECRET_ACCESS_KEY', 'AWS_SESSION_TOKEN', 'AWS_REGION', 'AWS_S3_BUCKET_NAME')


@pytest.fixture
def clean_env(monkeypatch):
    for name in env_vars:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


################################################
### Tests


def test_conn_config_from_env(clean_env):
    clean_env.setenv('AWS_ACCESS_KEY_ID', '  AKIDEXAMPLE\n')
    clean_env.setenv('AWS_SECRET_ACCESS_KEY', ' secret ')
    clean_env.setenv('AWS_REGION', 'eu-west-1 ')
    clean_env.setenv('AWS_S3_BUCKET_NAME', 'docs')

    conn_config = utils.build_conn_config()

    assert conn_config == {
        'access_key_id': 'AKIDEXAMPLE',
        'access_key': 'secret',
        'session_token': None,
        'region': 'eu-west-1',
        'bucket': 'docs',
        }


def test_conn_config_explicit_wins(clean_env):
    clean_env.setenv('AWS_ACCESS_KEY_ID', 'from-env')
    clean_env.setenv('AWS_SECRET_ACCESS_KEY', 'from-env')

    conn_config = utils.build_conn_config('explicit', 'explicit-secret', 'ap-southeast-2', 'bucket', 'http://localhost:5000', 'token')

    assert conn_config['access_key_id'] == 'explicit'
    assert conn_config['access_key'] == 'explicit-secret'
    assert conn_config['region'] == 'ap-southeast-2'
    assert conn_config['session_token'] == 'token'
    assert conn_config['endpoint_url'] == 'http://localhost:5000'


def test_conn_config_default_region(clean_env):
    clean_env.setenv('AWS_REGION', '  ')

    assert utils.build_conn_config('a', 'b')['region'] == 'us-east-1'


def test_conn_config_missing_credentials(clean_env):
    with pytest.raises(ValueError):
        utils.build_conn_config()
    with pytest.raises(ValueError):
        utils.build_conn_config('a', '   ')


def test_conn_config_bad_endpoint(clean_env):
    with pytest.raises(TypeError):
        utils.build_conn_config('a', 'b', endpoint_url='localhost:5000')


def test_is_url():
    assert utils.is_url('https://s3.us-east-1.amazonaws.com')
    assert utils.is_url('http://localhost:5000')
    assert not utils.is_url('s3://bucket/key')
    assert not utils.is_url('not a url')


def test_parse_s3_uri():
    assert utils.parse_s3_uri('s3://doc-bucket/uploads/file.pdf') == ('doc-bucket', 'uploads/file.pdf')
    assert utils.parse_s3_uri('s3://doc-bucket') == ('doc-bucket', '')
    with pytest.raises(ValueError):
        utils.parse_s3_uri('https://doc-bucket/file.pdf')


def test_parse_bucket_arn():
    assert utils.parse_bucket_arn('arn:aws:s3:::doc-bucket') == ('doc-bucket', '')
    assert utils.parse_bucket_arn('arn:aws:s3:::doc-bucket/kb') == ('doc-bucket', 'kb/')
    assert utils.parse_bucket_arn('arn:aws:s3:::doc-bucket/kb/') == ('doc-bucket', 'kb/')
    with pytest.raises(ValueError):
        utils.parse_bucket_arn('doc-bucket')


def test_model_id_from_arn():
    assert utils.model_id_from_arn('arn:aws:bedrock:us-east-1::foundation-model/anthropic.claude-v2:1') == 'anthropic.claude-v2:1'
    assert utils.model_id_from_arn('us.anthropic.claude-3-5-sonnet-20240620-v1:0') == 'us.anthropic.claude-3-5-sonnet-20240620-v1:0'


def test_build_s3_params():
    params, headers = utils.build_s3_params(prefix='docs/', max_keys=10, version_id='v1', range_start=0, range_end=9, metadata={'title': 'x'}, content_type='text/plain')

    assert params == {'prefix': 'docs/', 'max-keys': '10', 'versionId': 'v1'}
    assert headers == {'Range': 'bytes=0-9', 'x-amz-meta-title': 'x', 'Content-Type': 'text/plain'}

    _, headers = utils.build_s3_params(range_start=100)
    assert headers == {'Range': 'bytes=100-'}


def test_service_endpoint():
    assert utils.service_endpoint('bedrock-agent', 'us-west-2') == 'https://bedrock-agent.us-west-2.amazonaws.com/'


def test_quote_key():
    assert utils.quote_key('docs/my report (1)!.txt') == 'docs/my%20report%20%281%29%21.txt'
    assert utils.quote_key('reports/../2024/./q1.txt') == 'reports/%2E%2E/2024/%2E/q1.txt'
    assert utils.quote_key('a..b/.hidden/...') == 'a..b/.hidden/...'
