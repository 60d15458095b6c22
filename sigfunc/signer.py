import io
import hmac
import hashlib
import datetime
import logging
import urllib.parse
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

#######################################################
### Parameters

ALGORITHM = 'AWS4-HMAC-SHA256'
UNSIGNED_PAYLOAD = 'UNSIGNED-PAYLOAD'
EMPTY_SHA256 = 'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
MAX_PRESIGN_EXPIRES = 604800

default_ports = {'http': 80, 'https': 443}

# Computed by the signer, never taken from the caller
reserved_headers = ('authorization', 'x-amz-date', 'x-amz-security-token')

Body = Union[bytes, bytearray, memoryview, str, None]
Query = Union[str, Mapping[str, Union[str, Sequence[str]]], Sequence[Tuple[str, str]], None]


#######################################################
### Exceptions


class InputError(ValueError):
    """
    The request cannot be signed as given (bad target, missing credentials, etc.).
    """


class CryptoUnavailable(RuntimeError):
    """
    SHA-256 or HMAC-SHA256 is not available in this interpreter.
    """


#######################################################
### Primitives


def _check_crypto():
    try:
        hashlib.new('sha256')
    except ValueError as err:
        raise CryptoUnavailable('sha256 is not available from hashlib.') from err


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()


def get_signature_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    k_date = _hmac(('AWS4' + secret_key).encode('utf-8'), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, 'aws4_request')


def payload_hash(body=None) -> str:
    """
    Lowercase hex SHA-256 of the request body. File-like bodies are read and rewound to their starting position.
    """
    if body is None:
        return EMPTY_SHA256
    if isinstance(body, str):
        return hashlib.sha256(body.encode('utf-8')).hexdigest()
    if isinstance(body, (bytes, bytearray, memoryview)):
        return hashlib.sha256(body).hexdigest()
    if isinstance(body, io.TextIOBase):
        raise InputError('File bodies must be opened in binary mode.')
    if hasattr(body, 'read') and hasattr(body, 'seek'):
        pos = body.tell()
        h = hashlib.sha256()
        while True:
            chunk = body.read(524288)
            if not chunk:
                break
            if not isinstance(chunk, (bytes, bytearray, memoryview)):
                body.seek(pos)
                raise InputError(f'File bodies must return bytes, not {type(chunk).__name__}.')
            h.update(chunk)
        body.seek(pos)
        return h.hexdigest()

    raise InputError(f'Cannot hash a body of type {type(body).__name__}.')


def format_amz_date(timestamp: datetime.datetime) -> Tuple[str, str]:
    """
    Returns the (amz_date, date_stamp) pair. Naive datetimes are taken as UTC.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
    else:
        timestamp = timestamp.astimezone(datetime.timezone.utc)
    amz_date = timestamp.strftime('%Y%m%dT%H%M%SZ')

    return amz_date, amz_date[:8]


#######################################################
### Canonicalisation


def uri_encode(value: str) -> str:
    """
    Percent-encode everything except the RFC 3986 unreserved characters (A-Z a-z 0-9 - . _ ~).
    """
    return urllib.parse.quote(value, safe='')


def canonical_uri(path: str) -> str:
    """
    Each segment is decoded and then encoded once, so already-encoded paths are not double-encoded.
    """
    if path in ('', '/'):
        return '/'
    if not path.startswith('/'):
        path = '/' + path

    return '/'.join(uri_encode(urllib.parse.unquote(segment)) for segment in path.split('/'))


def parse_query(query: Query) -> List[Tuple[str, str]]:
    """
    Normalise a query string, mapping or sequence of pairs into decoded (key, value) pairs. Repeated keys are kept.
    """
    if not query:
        return []

    if isinstance(query, str):
        pairs = []
        for part in query.split('&'):
            if not part:
                continue
            key, _, value = part.partition('=')
            pairs.append((urllib.parse.unquote(key), urllib.parse.unquote(value)))
        return pairs

    if isinstance(query, Mapping):
        items = query.items()
    else:
        items = query

    pairs = []
    for key, value in items:
        if value is None:
            value = ''
        if isinstance(value, (list, tuple)):
            pairs.extend((str(key), str(v)) for v in value)
        else:
            pairs.append((str(key), str(value)))

    return pairs


def canonical_query_string(pairs: Sequence[Tuple[str, str]]) -> str:
    encoded = sorted((uri_encode(k), uri_encode(v)) for k, v in pairs)

    return '&'.join(f'{k}={v}' for k, v in encoded)


def canonical_headers(headers: Sequence[Tuple[str, str]]) -> Tuple[str, str]:
    """
    Returns the canonical header block (with its trailing newline) and the signed headers string.
    """
    lines = {}
    for name, value in headers:
        lines[name.lower()] = ' '.join(str(value).split())

    names = sorted(lines)
    block = ''.join(f'{name}:{lines[name]}\n' for name in names)

    return block, ';'.join(names)


def canonical_request(method: str, uri: str, query: str, headers_block: str, signed_headers: str, payload: str) -> str:
    return '\n'.join([method, uri, query, headers_block, signed_headers, payload])


def credential_scope(date_stamp: str, region: str, service: str) -> str:
    return f'{date_stamp}/{region}/{service}/aws4_request'


def string_to_sign(amz_date: str, scope: str, creq: str) -> str:
    return '\n'.join([
        ALGORITHM,
        amz_date,
        scope,
        hashlib.sha256(creq.encode('utf-8')).hexdigest()
        ])


#######################################################
### Request and result classes


class SignRequest:
    """
    Everything needed to sign one outbound request.
    """
    def __init__(self, method: str, url: str=None, *, host: str=None, path: str=None, query: Query=None, body: Body=None, region: str=None, service: str=None, access_key_id: str=None, secret_access_key: str=None, session_token: str=None, headers: Mapping[str, str]=None, timestamp: datetime.datetime=None, content_sha256: bool=None):
        """
        Parameters
        ----------
        method : str
            The HTTP verb.
        url : str or None
            The full request url. Either url or host and path must be passed.
        host : str or None
            The host (with port if not the default) when url is not passed.
        path : str or None
            The request path when url is not passed.
        query : str, dict, list of tuples, or None
            Extra query parameters. They are appended to the query of the url.
        body : bytes, str, file-like, or None
            The payload. None is hashed as an empty string.
        region : str
            The AWS region. No default is supplied.
        service : str
            The signing name of the AWS service (e.g. s3 or bedrock).
        access_key_id : str
            The access key id also known as aws_access_key_id.
        secret_access_key : str
            The access key also known as aws_secret_access_key.
        session_token : str or None
            The session token for temporary credentials.
        headers : dict or None
            Extra headers to sign. They must be sent unchanged with the request.
        timestamp : datetime.datetime or None
            The signing instant. None uses the current time.
        content_sha256 : bool or None
            Whether to send and sign x-amz-content-sha256. None signs it only for s3.
        """
        if not method or not isinstance(method, str):
            raise InputError('method must be a non-empty string.')
        if not access_key_id or not secret_access_key:
            raise InputError('access_key_id and secret_access_key must both be non-empty.')
        if not region or not service:
            raise InputError('region and service must both be non-empty.')

        if url is not None:
            if host is not None or path is not None:
                raise InputError('Pass either url or host and path, not both.')
            scheme, netloc, url_path, url_query = _split_url(url)
        elif host and path is not None:
            scheme = 'https'
            netloc = host
            url_path, _, url_query = path.partition('?')
        else:
            raise InputError('Either url or both host and path must be provided.')

        self.method = method.upper()
        self.scheme = scheme
        self.host = _canonical_host(scheme, netloc)
        self.path = url_path or '/'
        self.query = parse_query(url_query) + parse_query(query)
        self.body = body
        self.region = region
        self.service = service
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.headers = dict(headers) if headers else {}
        self.timestamp = timestamp if timestamp is not None else datetime.datetime.now(datetime.timezone.utc)

        if content_sha256 is None:
            content_sha256 = service == 's3'
        self.content_sha256 = content_sha256

        for name, value in self.headers.items():
            if not isinstance(name, str) or not name.strip():
                raise InputError('Header names must be non-empty strings.')
            if value is None:
                raise InputError(f'Header {name} has no value.')
            if name.lower() == 'host':
                self.host = str(value).strip()


    def extra_headers(self) -> List[Tuple[str, str]]:
        """
        Caller headers that get signed, in the caller's casing.
        """
        return [(name, str(value)) for name, value in self.headers.items() if name.lower() not in reserved_headers + ('host', 'x-amz-content-sha256')]


    def __repr__(self):
        return f'SignRequest({self.method} {self.scheme}://{self.host}{self.path}, region={self.region}, service={self.service})'


class SignedHeaders:
    """
    The ordered headers to merge into the outgoing request, plus the parts of the signature.
    """
    def __init__(self, headers: List[Tuple[str, str]], amz_date: str, credential_scope: str, signed_headers: str, signature: str):
        self._headers = headers
        self.amz_date = amz_date
        self.credential_scope = credential_scope
        self.signed_headers = signed_headers.split(';')
        self.signature = signature

    @property
    def authorization(self):
        return self['Authorization']

    def items(self):
        return list(self._headers)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._headers)

    def get(self, name, default=None):
        name = name.lower()
        for key, value in self._headers:
            if key.lower() == name:
                return value
        return default

    def __getitem__(self, name):
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __contains__(self, name):
        return self.get(name) is not None

    def __iter__(self):
        return iter([key for key, _ in self._headers])

    def __len__(self):
        return len(self._headers)

    def __repr__(self):
        return f'SignedHeaders({", ".join(self)})'


#######################################################
### Helper functions


def _split_url(url: str):
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError as err:
        raise InputError(f'{url} is not a valid url.') from err

    if parts.scheme not in default_ports:
        raise InputError(f'{url} must be an http or https url.')
    if not parts.netloc:
        raise InputError(f'{url} has no host.')

    return parts.scheme, parts.netloc, parts.path, parts.query


def _canonical_host(scheme: str, netloc: str) -> str:
    """
    Strips any userinfo and the default port for the scheme.
    """
    host = netloc.rpartition('@')[2]
    try:
        port = urllib.parse.urlsplit(f'//{host}').port
    except ValueError as err:
        raise InputError(f'{netloc} has an invalid port.') from err

    if not host or host.startswith(':'):
        raise InputError(f'{netloc} has no host.')

    if port is not None and port == default_ports.get(scheme):
        host = host[:-len(f':{port}')]

    return host


def _base_headers(request: SignRequest, amz_date: str, payload: str, content_sha256: bool) -> List[Tuple[str, str]]:
    headers = [('Host', request.host), ('X-Amz-Date', amz_date)]
    if content_sha256:
        headers.append(('X-Amz-Content-Sha256', payload))
    if request.session_token:
        headers.append(('X-Amz-Security-Token', request.session_token))

    return headers


def _signature(request: SignRequest, date_stamp: str, amz_date: str, query: str, headers: List[Tuple[str, str]], payload: str):
    headers_block, signed_headers = canonical_headers(headers)
    creq = canonical_request(request.method, canonical_uri(request.path), query, headers_block, signed_headers, payload)
    scope = credential_scope(date_stamp, request.region, request.service)
    sts = string_to_sign(amz_date, scope, creq)

    logger.debug('Canonical request:\n%s', creq)
    logger.debug('String to sign:\n%s', sts)

    key = get_signature_key(request.secret_access_key, date_stamp, request.region, request.service)
    signature = hmac.new(key, sts.encode('utf-8'), hashlib.sha256).hexdigest()

    return scope, signed_headers, signature


#######################################################
### Main functions


def sign(request: SignRequest) -> SignedHeaders:
    """
    Compute the AWS Signature Version 4 headers for one request.

    Parameters
    ----------
    request : SignRequest
        The request to sign.

    Returns
    -------
    SignedHeaders
    """
    _check_crypto()

    amz_date, date_stamp = format_amz_date(request.timestamp)

    # A caller-provided content hash (e.g. UNSIGNED-PAYLOAD for streams) is signed as given
    content_sha256 = request.content_sha256
    payload = None
    for name, value in request.headers.items():
        if name.lower() == 'x-amz-content-sha256':
            payload = str(value)
            content_sha256 = True
    if payload is None:
        payload = payload_hash(request.body)

    headers = _base_headers(request, amz_date, payload, content_sha256) + request.extra_headers()
    query = canonical_query_string(request.query)

    scope, signed_headers, signature = _signature(request, date_stamp, amz_date, query, headers, payload)

    authorization = f'{ALGORITHM} Credential={request.access_key_id}/{scope}, SignedHeaders={signed_headers}, Signature={signature}'
    headers.append(('Authorization', authorization))

    return SignedHeaders(headers, amz_date, scope, signed_headers, signature)


def presign(request: SignRequest, expires: int=3600) -> str:
    """
    Build a presigned url (query string authentication). Only host and the extra headers of the request are signed, and the payload is not.

    Parameters
    ----------
    request : SignRequest
        The request to sign. The body is ignored.
    expires : int
        The number of seconds the url is valid for (1 to 604800).

    Returns
    -------
    str
    """
    if isinstance(expires, bool) or not isinstance(expires, int) or not (1 <= expires <= MAX_PRESIGN_EXPIRES):
        raise InputError(f'expires must be an int between 1 and {MAX_PRESIGN_EXPIRES}.')

    _check_crypto()

    amz_date, date_stamp = format_amz_date(request.timestamp)
    scope = credential_scope(date_stamp, request.region, request.service)

    headers = [('Host', request.host)] + request.extra_headers()
    _, signed_headers = canonical_headers(headers)

    auth_params = [
        ('X-Amz-Algorithm', ALGORITHM),
        ('X-Amz-Credential', f'{request.access_key_id}/{scope}'),
        ('X-Amz-Date', amz_date),
        ('X-Amz-Expires', str(expires)),
        ('X-Amz-SignedHeaders', signed_headers),
        ]
    if request.session_token:
        auth_params.append(('X-Amz-Security-Token', request.session_token))

    query = canonical_query_string(request.query + auth_params)

    _, _, signature = _signature(request, date_stamp, amz_date, query, headers, UNSIGNED_PAYLOAD)

    return f'{request.scheme}://{request.host}{canonical_uri(request.path)}?{query}&X-Amz-Signature={signature}'


class SigV4Auth:
    """
    Holds one set of credentials and signs requests for a single region and service.
    """
    def __init__(self, access_key: str, secret_key: str, region: str, service: str='s3', session_token: str=None):
        if not access_key or not secret_key:
            raise InputError('access_key and secret_key must both be non-empty.')
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.service = service
        self.session_token = session_token

    def _request(self, method, url, headers, body, timestamp):
        return SignRequest(method, url, body=body, region=self.region, service=self.service, access_key_id=self.access_key, secret_access_key=self.secret_key, session_token=self.session_token, headers=headers, timestamp=timestamp)

    def sign(self, request_method: str, url: str, headers: Optional[Dict[str, str]]=None, body=None, timestamp: datetime.datetime=None) -> SignedHeaders:
        return sign(self._request(request_method, url, headers, body, timestamp))

    def add_auth(self, request_method: str, url: str, headers: Dict[str, str], body=None, timestamp: datetime.datetime=None) -> SignedHeaders:
        """
        Calculates the AWS Signature Version 4 and merges the signed headers into the headers dict.
        """
        signed = self.sign(request_method, url, headers, body, timestamp)

        # Drop anything the signer replaces (e.g. from a previous attempt) regardless of casing
        replaced = {name.lower() for name in signed}
        for name in list(headers):
            if name.lower() in replaced:
                del headers[name]
        headers.update(signed.as_dict())

        return signed

    def presign(self, request_method: str, url: str, expires: int=3600, headers: Optional[Dict[str, str]]=None, timestamp: datetime.datetime=None) -> str:
        return presign(self._request(request_method, url, headers, None, timestamp), expires)
