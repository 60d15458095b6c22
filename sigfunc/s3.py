#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Created on Tue Mar 10 14:21:09 2026

@author: mike
"""
import io
import logging
import urllib.parse
from typing import Union

from . import http_url
from . import utils
from .response import S3Response
from .signer import SigV4Auth

logger = logging.getLogger(__name__)

#######################################################
### Session


class S3Session:
    """

    """
    def __init__(self, access_key_id: str=None, access_key: str=None, bucket: str=None, endpoint_url: str=None, region: str=None, session_token: str=None, max_pool_connections: int = 10, max_attempts: int = 3, read_timeout: int=120, stream=True):
        """
        Establishes a signed S3 connection. Credentials, region, and bucket that are not passed are read from the AWS_* environment variables.

        Parameters
        ----------
        access_key_id : str
            The access key id also known as aws_access_key_id.
        access_key : str
            The access key also known as aws_secret_access_key.
        bucket : str
            The bucket every object method works on.
        endpoint_url : str
            The endpoint http(s) url for an S3 compatible service. Objects are then addressed path-style under it. None uses the virtual-hosted AWS url for the bucket.
        region : str
            The AWS region. Default us-east-1.
        session_token : str
            The session token for temporary credentials.
        max_pool_connections : int
            The number of connection pools to keep.
        max_attempts: int
            The number of retries if the connection fails.
        read_timeout: int
            The read timeout in seconds.
        stream : bool
            Leave get_object bodies on the connection (stream) instead of loading them into data.
        """
        conn_config = utils.build_conn_config(access_key_id, access_key, region, bucket, endpoint_url, session_token)
        if conn_config['bucket'] is None:
            raise ValueError('bucket must be passed or set as AWS_S3_BUCKET_NAME.')

        self._session = http_url.session(max_pool_connections, max_attempts, read_timeout)
        self._signer = SigV4Auth(conn_config['access_key_id'], conn_config['access_key'], conn_config['region'], 's3', conn_config['session_token'])

        self.bucket = conn_config['bucket']
        self.region = conn_config['region']
        self._stream = stream
        self._endpoint_url = conn_config.get('endpoint_url')
        if self._endpoint_url and not self._endpoint_url.endswith('/'):
            self._endpoint_url += '/'


    def _object_url(self, key: str='', bucket: str=None) -> str:
        """
        Path-style under a custom endpoint, virtual-hosted on AWS.
        """
        if bucket is None:
            bucket = self.bucket
        key = utils.quote_key(key)
        if self._endpoint_url:
            return f'{self._endpoint_url}{bucket}/{key}'
        else:
            return f'https://{bucket}.s3.{self.region}.amazonaws.com/{key}'


    def request(self, method, url, headers=None, fields=None, body=None, preload_content=None):
        """
        Sign and send one S3 request. fields are added to the query before signing.
        """
        if headers is None:
            headers = {}

        if preload_content is None:
            preload_content = not self._stream

        if fields:
            scheme, netloc, path, query, fragment = urllib.parse.urlsplit(url)
            query_str = urllib.parse.urlencode(fields, quote_via=urllib.parse.quote)
            if query:
                query = f'{query}&{query_str}'
            else:
                query = query_str
            url = urllib.parse.urlunsplit((scheme, netloc, path, query, fragment))

        self._signer.add_auth(method, url, headers, body)
        logger.debug('%s %s', method, url)

        return self._session.request(method, url, headers=headers, body=body, preload_content=preload_content)


    def get_object(self, key: str, version_id: str=None, range_start: int=None, range_end: int=None):
        """
        Signed GET of an object. With stream=True the body is left on the connection in the stream attribute.

        Parameters
        ----------
        key : str
            The object key. It is percent-encoded for the url path.
        version_id : str
            The object version. None means the latest.
        range_start: int
            First byte of the Range header (inclusive).
        range_end: int
            Last byte of the Range header (inclusive). None reads to the end.

        Returns
        -------
        Response
        """
        query_params, headers = utils.build_s3_params(version_id=version_id, range_start=range_start, range_end=range_end)

        resp = self.request('GET', self._object_url(key), headers=headers, fields=query_params)

        return S3Response(resp, self._stream)


    def head_object(self, key: str, version_id: str=None):
        """
        Signed HEAD of an object. Only the status and metadata are filled.

        Parameters
        ----------
        key : str
            The object key. It is percent-encoded for the url path.
        version_id : str
            The object version. None means the latest.

        Returns
        -------
        Response
        """
        query_params, headers = utils.build_s3_params(version_id=version_id)

        # HEAD responses have no body
        resp = self.request('HEAD', self._object_url(key), headers=headers, fields=query_params, preload_content=True)

        return S3Response(resp, False)


    def put_object(self, key: str, obj: Union[bytes, io.BufferedIOBase], metadata: dict={}, content_type: str=None):
        """
        Signed PUT of an object. The body is hashed into x-amz-content-sha256.

        Parameters
        ----------
        key : str
            The object key to write.
        obj : bytes or io.BufferedIOBase
            The file object to be uploaded. File objects are hashed for the signature and rewound before sending.
        metadata : dict or None
            A dict of the user metadata that should be saved along with the object. Keys and values must be strings.
        content_type : str
            Sent and signed as Content-Type.

        Returns
        -------
        Response
        """
        _, headers = utils.build_s3_params(metadata=metadata, content_type=content_type)

        if isinstance(obj, (bytes, bytearray, memoryview)):
            body = bytes(obj)
        elif isinstance(obj, io.IOBase) and obj.seekable():
            body = obj
            # Without a length urllib3 falls back to chunked encoding, which S3 rejects
            pos = obj.tell()
            headers['Content-Length'] = str(obj.seek(0, io.SEEK_END) - pos)
            obj.seek(pos)
        else:
            raise TypeError('obj must be bytes or a seekable file object.')

        resp = self.request('PUT', self._object_url(key), headers=headers, body=body, preload_content=True)

        s3resp = S3Response(resp, False)
        s3resp.metadata.update(metadata)

        return s3resp


    def delete_object(self, key: str, version_id: str=None):
        """
        Signed DELETE of an object, or of one version when version_id is passed. S3 answers 204.

        Parameters
        ----------
        key : str
            The object key. It is percent-encoded for the url path.
        version_id : str
            The object version. None means the latest.

        Returns
        -------
        Response
        """
        query_params, headers = utils.build_s3_params(version_id=version_id)

        resp = self.request('DELETE', self._object_url(key), headers=headers, fields=query_params, preload_content=True)

        return S3Response(resp, False)


    def copy_object(self, source_key: str, dest_key: str, source_version_id: str=None, source_bucket: str=None, dest_bucket: str=None, metadata: dict={}, content_type: str=None):
        """
        Server-side copy. The x-amz-copy-source header is signed, so the source must be readable with the same credentials.

        Parameters
        ----------
        source_key : str
            The key to copy from.
        dest_key : str
            The key to copy to.
        source_version_id : str or None
            The version of the source object. None copies the latest.
        source_bucket : str or None
            The bucket to copy from. None uses the session bucket.
        dest_bucket: str or None
            The destination bucket. If None, then it uses the initialised bucket.
        metadata : dict
            User metadata for the copy. It replaces the source metadata when given, otherwise the source metadata is kept.
        content_type : str
            The http content type of the destination object.

        Returns
        -------
        Response
        """
        if source_bucket is None:
            source_bucket = self.bucket

        copy_source = f'/{source_bucket}/{utils.quote_key(source_key)}'
        if source_version_id:
            copy_source += f'?versionId={source_version_id}'

        _, headers = utils.build_s3_params(metadata=metadata, content_type=content_type)
        headers['x-amz-copy-source'] = copy_source
        if metadata:
            headers['x-amz-metadata-directive'] = 'REPLACE'

        # CopyObjectResult is a small XML body
        resp = self.request('PUT', self._object_url(dest_key, dest_bucket), headers=headers, preload_content=True)

        s3resp = S3Response(resp, False)
        s3resp.metadata.update(metadata)

        return s3resp


    def list_objects(self, prefix: str=None, start_after: str=None, delimiter: str=None, max_keys: int=None, continuation_token: str=None):
        """
        One page of a ListObjectsV2 request. The XML body is returned as-is in the data attribute.

        Parameters
        ----------
        prefix : str
            Only list keys starting with this.
        start_after : str
            List keys after this one.
        delimiter : str
            Keys sharing a prefix up to this character are rolled up into CommonPrefixes.
        max_keys : int
            The max number of keys in the page.
        continuation_token : str
            The NextContinuationToken of the previous page.

        Returns
        -------
        Response
        """
        query_params, headers = utils.build_s3_params(prefix=prefix, start_after=start_after, delimiter=delimiter, max_keys=max_keys, continuation_token=continuation_token)
        query_params['list-type'] = '2'

        resp = self.request('GET', self._object_url(), headers=headers, fields=query_params, preload_content=True)

        return S3Response(resp, False)


    def presigned_url(self, key: str, method: str='GET', expires: int=3600, version_id: str=None, content_type: str=None):
        """
        A presigned url for downloading (GET) or uploading (PUT) an object without credentials.

        Parameters
        ----------
        key : str
            The object key. It is percent-encoded for the url path.
        method : str
            GET or PUT.
        expires : int
            The number of seconds the url is valid for.
        version_id : str
            The object version. None means the latest.
        content_type : str
            For PUT, the content type the uploader must send.

        Returns
        -------
        str
        """
        method = method.upper()
        if method not in ('GET', 'PUT'):
            raise ValueError('method must be GET or PUT.')

        url = self._object_url(key)
        if version_id is not None:
            url += '?' + urllib.parse.urlencode({'versionId': version_id})

        headers = None
        if method == 'PUT' and isinstance(content_type, str):
            headers = {'Content-Type': content_type}

        logger.debug('Presigning %s %s', method, self._object_url(key))

        return self._signer.presign(method, url, expires, headers)
