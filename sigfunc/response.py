#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Created on Tue Mar 10 13:05:22 2026

@author: mike
"""
import logging
import orjson
import urllib3
import xml.etree.ElementTree as ET

from sigfunc import utils

logger = logging.getLogger(__name__)

#############################################################
### Parameters

# Error codes that point at the signer or the local clock rather than the request
signing_error_codes = ('SignatureDoesNotMatch', 'InvalidSignatureException', 'RequestTimeTooSkewed', 'IncompleteSignatureException')


#############################################################
### Helper functions


def parse_s3_error(data):
    """
    Pull the Code and Message out of an S3 XML error body.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError:
        return None, None

    # S3 errors have no namespace, but some compatible services add one
    code = None
    message = None
    for elem in root.iter():
        tag = elem.tag.rsplit('}', 1)[-1]
        if tag == 'Code' and code is None:
            code = elem.text
        elif tag == 'Message' and message is None:
            message = elem.text

    return code, message


def parse_json_error(data, headers):
    """
    Bedrock errors are JSON with a message and the error type in either the body or the x-amzn-ErrorType header.
    """
    try:
        body = orjson.loads(data)
    except orjson.JSONDecodeError:
        return None, None

    if not isinstance(body, dict):
        return None, None

    message = body.get('message') or body.get('Message')
    code = body.get('__type') or headers.get('x-amzn-ErrorType')
    if code:
        code = code.split(':', 1)[0].rsplit('#', 1)[-1]

    return code, message


#############################################################
### Response classes


class Response:
    """
    Unified response class for S3 and Bedrock requests.
    """

    def __init__(self, response, stream_resp, service):
        """
        service: 's3' or 'bedrock'
        """
        self.status = response.status
        self.headers = dict(response.headers)
        self.error = None
        self.stream = None
        self.data = None

        self.metadata = utils.add_metadata_from_urllib3(response)

        if (self.status // 100) == 2:
            if stream_resp:
                self.stream = response
            else:
                self.data = response.data
        else:
            data = response.data
            if service == 's3':
                code, message = parse_s3_error(data)
            else:
                code, message = parse_json_error(data, response.headers)

            if message is None:
                message = 'The response produced nonsense content.' if data else 'The response had no content.'

            self.error = {'status': self.status, 'code': code, 'message': message}

            if code in signing_error_codes or 'Signature expired' in message:
                logger.warning('AWS rejected the request signature (%s): %s', code, message)


    def json(self):
        """
        Decode the response body as JSON.
        """
        if self.stream is not None:
            self.data = self.stream.read()
            self.stream = None

        return orjson.loads(self.data)


    def raise_for_status(self):
        if self.error is not None:
            raise urllib3.exceptions.HTTPError(f'{self.error}')


    def __repr__(self):
        return f'status: {self.status}'


S3Response = lambda r, s: Response(r, s, 's3')
BedrockResponse = lambda r, s: Response(r, s, 'bedrock')
