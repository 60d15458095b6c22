#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Created on Tue Mar 10 10:40:17 2026

@author: mike
"""
import os
import email.utils
import urllib.parse
from typing import Tuple
from pydantic import HttpUrl, TypeAdapter, ValidationError

#######################################################
### Parameters

default_region = 'us-east-1'

env_names = {
    'access_key_id': 'AWS_ACCESS_KEY_ID',
    'access_key': 'AWS_SECRET_ACCESS_KEY',
    'session_token': 'AWS_SESSION_TOKEN',
    'region': 'AWS_REGION',
    'bucket': 'AWS_S3_BUCKET_NAME',
    }

max_metadata_size = 2048

_http_url = TypeAdapter(HttpUrl)

#######################################################
### Helper Functions


def is_url(url):
    try:
        _http_url.validate_python(url)
        return True
    except ValidationError:
        return False


def _from_env(value, name):
    """
    Explicit values win over the environment. Both are whitespace trimmed and empty strings count as missing.
    """
    if value is None:
        value = os.environ.get(env_names[name])
    if isinstance(value, str):
        value = value.strip()
    return value or None


def build_conn_config(access_key_id: str=None, access_key: str=None, region: str=None, bucket: str=None, endpoint_url: str=None, session_token: str=None):
    """
    Resolve the AWS connection parameters. Anything not passed is read from the AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_SESSION_TOKEN, AWS_REGION, and AWS_S3_BUCKET_NAME environment variables.

    Parameters
    ----------
    access_key_id : str or None
        The access key id also known as aws_access_key_id.
    access_key : str or None
        The access key also known as aws_secret_access_key.
    region : str or None
        The AWS region. Falls back to us-east-1.
    bucket : str or None
        The default S3 bucket.
    endpoint_url : str or None
        A custom http(s) endpoint (e.g. an S3 compatible service).
    session_token : str or None
        The session token for temporary credentials.

    Returns
    -------
    dict
    """
    conn_config = {
        'access_key_id': _from_env(access_key_id, 'access_key_id'),
        'access_key': _from_env(access_key, 'access_key'),
        'session_token': _from_env(session_token, 'session_token'),
        'region': _from_env(region, 'region') or default_region,
        'bucket': _from_env(bucket, 'bucket'),
        }

    if conn_config['access_key_id'] is None or conn_config['access_key'] is None:
        raise ValueError('AWS credentials not configured. Pass access_key_id and access_key or set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY.')

    if isinstance(endpoint_url, str):
        if not is_url(endpoint_url):
            raise TypeError(f'{endpoint_url} is not a proper http url.')
        conn_config['endpoint_url'] = endpoint_url

    return conn_config


def service_endpoint(prefix: str, region: str) -> str:
    """
    The regional AWS endpoint for an endpoint prefix, e.g. bedrock-runtime.
    """
    return f'https://{prefix}.{region}.amazonaws.com/'


def parse_s3_uri(s3_uri: str) -> Tuple[str, str]:
    """
    Split s3://bucket/prefix into the bucket and prefix.
    """
    parts = urllib.parse.urlsplit(s3_uri)
    if parts.scheme != 's3' or not parts.netloc:
        raise ValueError(f'{s3_uri} is not an s3 uri.')

    return parts.netloc, parts.path.lstrip('/')


def parse_bucket_arn(bucket_arn: str) -> Tuple[str, str]:
    """
    Split arn:aws:s3:::bucket/prefix into the bucket and prefix. A non-empty prefix always ends with a slash.
    """
    _, sep, path = bucket_arn.partition(':::')
    if not sep or not path:
        raise ValueError(f'{bucket_arn} is not an s3 bucket arn.')

    bucket, _, prefix = path.partition('/')
    if prefix and not prefix.endswith('/'):
        prefix += '/'

    return bucket, prefix


def model_id_from_arn(model: str) -> str:
    """
    Foundation model arns are reduced to the model id. Anything else (ids, inference profile ids) is returned unchanged.
    """
    if 'foundation-model/' in model:
        return model.split('foundation-model/', 1)[1]
    return model


def quote_key(key: str) -> str:
    """
    Percent-encode an object key for use in a url path, keeping the slashes. Segments that are exactly . or .. are encoded too, as urllib3 removes dot segments from request paths.
    """
    segments = []
    for segment in key.split('/'):
        if segment in ('.', '..'):
            segments.append(segment.replace('.', '%2E'))
        else:
            segments.append(urllib.parse.quote(segment, safe=''))

    return '/'.join(segments)


def check_metadata(metadata: dict):
    """
    Object user metadata must be str keys and values under 2048 bytes in total.
    """
    size = 0
    for meta_key, meta_val in metadata.items():
        if isinstance(meta_key, str) and isinstance(meta_val, str):
            size += len(meta_key.encode())
            size += len(meta_val.encode())
        else:
            raise TypeError('metadata keys and values must be strings.')

    if size > max_metadata_size:
        raise ValueError(f'metadata size is {size} bytes, but it must be under {max_metadata_size} bytes.')


def build_s3_params(start_after: str=None, prefix: str=None, delimiter: str=None, max_keys: int=None, continuation_token: str=None, range_start: int=None, range_end: int=None, metadata: dict={}, content_type: str=None, version_id: str=None):
    """
    Build the query parameters and headers for an S3 request.
    """
    params = {}
    headers = {}

    if start_after is not None:
        params['start-after'] = start_after
    if prefix is not None:
        params['prefix'] = prefix
    if delimiter is not None:
        params['delimiter'] = delimiter
    if max_keys is not None:
        params['max-keys'] = str(max_keys)
    if continuation_token is not None:
        params['continuation-token'] = continuation_token
    if version_id is not None:
        params['versionId'] = version_id

    if (range_start is not None) or (range_end is not None):
        range_dict = {}
        if range_start is not None:
            range_dict['start'] = str(range_start)
        else:
            range_dict['start'] = ''

        if range_end is not None:
            range_dict['end'] = str(range_end)
        else:
            range_dict['end'] = ''

        headers['Range'] = 'bytes={start}-{end}'.format(**range_dict)

    if metadata:
        check_metadata(metadata)
        for k, v in metadata.items():
            headers[f'x-amz-meta-{k}'] = v

    if isinstance(content_type, str):
        headers['Content-Type'] = content_type

    return params, headers


def add_metadata_from_urllib3(response):
    """
    Function to create metadata from the http headers/response.
    """
    headers = response.headers
    metadata = {'status': response.status}

    for key, value in headers.items():
        key = key.lower()
        if key == 'content-length':
            metadata['content_length'] = int(value)
        elif key == 'content-type':
            metadata['content_type'] = value
        elif key == 'etag':
            metadata['etag'] = value.strip('"')
        elif key == 'x-amz-version-id':
            metadata['version_id'] = value
        elif key in ('x-amz-request-id', 'x-amzn-requestid'):
            metadata['request_id'] = value
        elif key == 'last-modified':
            try:
                metadata['last_modified'] = email.utils.parsedate_to_datetime(value)
            except (TypeError, ValueError):
                pass
        elif key.startswith('x-amz-meta-'):
            new_key = key[len('x-amz-meta-'):]
            metadata[new_key] = value

    return metadata
