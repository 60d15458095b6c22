#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Created on Wed Mar 11 09:47:30 2026

@author: mike
"""
import logging
import orjson
import urllib.parse
from typing import List

from . import http_url
from . import utils
from .response import BedrockResponse
from .signer import SigV4Auth

logger = logging.getLogger(__name__)

#######################################################
### Parameters

# bedrock, bedrock-runtime, bedrock-agent, and bedrock-agent-runtime all sign as bedrock
signing_name = 'bedrock'

default_model_id = 'anthropic.claude-3-5-sonnet-20240620-v1:0'

default_inference_config = {'maxTokens': 4096, 'temperature': 0.7}

default_number_of_results = 5


#######################################################
### Helper functions


def quote_path_param(value: str) -> str:
    """
    Model ids carry colons (e.g. ...-v1:0). They are valid in a path and are sent as-is so that the path AWS sees is the path that was signed.
    """
    return urllib.parse.quote(value, safe=':')


#######################################################
### Session


class BedrockSession:
    """

    """
    def __init__(self, access_key_id: str=None, access_key: str=None, region: str=None, session_token: str=None, max_pool_connections: int = 10, max_attempts: int = 3, read_timeout: int=120):
        """
        Establishes a signed connection to the Bedrock runtime, control plane, and knowledge base (agent) endpoints. Credentials and region that are not passed are read from the AWS_* environment variables.

        Parameters
        ----------
        access_key_id : str
            The access key id also known as aws_access_key_id.
        access_key : str
            The access key also known as aws_secret_access_key.
        region : str
            The AWS region. Default us-east-1.
        session_token : str
            The session token for temporary credentials.
        max_pool_connections : int
            The number of simultaneous connections.
        max_attempts: int
            The number of retries if the connection fails.
        read_timeout: int
            The read timeout in seconds. Model invocations can be slow.
        """
        conn_config = utils.build_conn_config(access_key_id, access_key, region, session_token=session_token)

        self._session = http_url.session(max_pool_connections, max_attempts, read_timeout)
        self._signer = SigV4Auth(conn_config['access_key_id'], conn_config['access_key'], conn_config['region'], signing_name, conn_config['session_token'])
        self.region = conn_config['region']


    def request(self, method: str, endpoint_prefix: str, path: str, body: dict=None, fields: dict=None):
        """
        Wrapper to perform a signed JSON request via urllib3.

        Parameters
        ----------
        method : str
            The http method.
        endpoint_prefix : str
            bedrock, bedrock-runtime, bedrock-agent, or bedrock-agent-runtime.
        path : str
            The already quoted request path.
        body : dict or None
            Serialised to JSON. Content-Type is then sent and signed.
        fields : dict or None
            Query parameters.

        Returns
        -------
        Response
        """
        url = utils.service_endpoint(endpoint_prefix, self.region) + path.lstrip('/')
        if fields:
            url += '?' + urllib.parse.urlencode(fields, quote_via=urllib.parse.quote)

        headers = {}
        data = None
        if body is not None:
            data = orjson.dumps(body)
            headers['Content-Type'] = 'application/json'

        self._signer.add_auth(method, url, headers, data)
        logger.debug('%s %s', method, url)

        resp = self._session.request(method, url, headers=headers, body=data, preload_content=True)

        return BedrockResponse(resp, False)


    ## Runtime

    def converse(self, model_id: str, messages: List[dict], system: List[dict]=None, inference_config: dict=None):
        """
        Send a conversation to a model through the Converse API.

        Parameters
        ----------
        model_id : str
            The model id, foundation model arn, or inference profile id.
        messages : list of dict
            The Converse messages, e.g. [{'role': 'user', 'content': [{'text': '...'}]}].
        system : list of dict or None
            System prompts, e.g. [{'text': '...'}].
        inference_config : dict or None
            maxTokens, temperature, etc. Defaults to 4096 tokens at temperature 0.7.

        Returns
        -------
        Response
        """
        body = {
            'messages': messages,
            'inferenceConfig': default_inference_config if inference_config is None else inference_config,
            }
        if system:
            body['system'] = system

        path = f'model/{quote_path_param(utils.model_id_from_arn(model_id))}/converse'

        return self.request('POST', 'bedrock-runtime', path, body)


    def converse_text(self, model_id: str, text: str, system_prompt: str=None, inference_config: dict=None):
        """
        Converse with a single user message.
        """
        messages = [{'role': 'user', 'content': [{'text': text}]}]
        system = [{'text': system_prompt}] if system_prompt else None

        return self.converse(model_id, messages, system, inference_config)


    def retrieve_and_generate(self, query: str, knowledge_base_id: str, model_arn: str=None, number_of_results: int=default_number_of_results, inference_config: dict=None):
        """
        Query a knowledge base and generate an answer from the retrieved passages.

        Parameters
        ----------
        query : str
            The user query.
        knowledge_base_id : str
            The knowledge base id.
        model_arn : str or None
            The model arn or inference profile id. None uses the default foundation model in the session region.
        number_of_results : int
            The number of passages to retrieve.
        inference_config : dict or None
            The text inference config. Defaults to 4096 tokens at temperature 0.7.

        Returns
        -------
        Response
        """
        if model_arn is None:
            model_arn = f'arn:aws:bedrock:{self.region}::foundation-model/{default_model_id}'

        kb_config = {
            'knowledgeBaseId': knowledge_base_id,
            'modelArn': model_arn,
            'retrievalConfiguration': {
                'vectorSearchConfiguration': {'numberOfResults': number_of_results}
                },
            'generationConfiguration': {
                'inferenceConfig': {
                    'textInferenceConfig': default_inference_config if inference_config is None else inference_config
                    }
                },
            }
        body = {
            'input': {'text': query},
            'retrieveAndGenerateConfiguration': {'type': 'KNOWLEDGE_BASE', 'knowledgeBaseConfiguration': kb_config},
            }

        return self.request('POST', 'bedrock-agent-runtime', 'retrieveAndGenerate', body)


    ## Control plane

    def list_foundation_models(self, by_provider: str=None, by_output_modality: str=None):
        fields = {}
        if by_provider is not None:
            fields['byProvider'] = by_provider
        if by_output_modality is not None:
            fields['byOutputModality'] = by_output_modality

        return self.request('GET', 'bedrock', 'foundation-models', fields=fields)


    def list_inference_profiles(self, max_results: int=None, next_token: str=None):
        fields = {}
        if max_results is not None:
            fields['maxResults'] = str(max_results)
        if next_token is not None:
            fields['nextToken'] = next_token

        return self.request('GET', 'bedrock', 'inference-profiles', fields=fields)


    ## Knowledge bases

    def list_knowledge_bases(self, max_results: int=100, next_token: str=None):
        body = {'maxResults': max_results}
        if next_token is not None:
            body['nextToken'] = next_token

        return self.request('POST', 'bedrock-agent', 'knowledgebases/', body)


    def list_data_sources(self, knowledge_base_id: str, max_results: int=None):
        body = {}
        if max_results is not None:
            body['maxResults'] = max_results

        path = f'knowledgebases/{quote_path_param(knowledge_base_id)}/datasources/'

        return self.request('POST', 'bedrock-agent', path, body)


    def get_data_source(self, knowledge_base_id: str, data_source_id: str):
        path = f'knowledgebases/{quote_path_param(knowledge_base_id)}/datasources/{quote_path_param(data_source_id)}'

        return self.request('GET', 'bedrock-agent', path)


    def start_ingestion_job(self, knowledge_base_id: str, data_source_id: str):
        """
        Start syncing a data source into its knowledge base.
        """
        path = f'knowledgebases/{quote_path_param(knowledge_base_id)}/datasources/{quote_path_param(data_source_id)}/ingestionjobs/'

        return self.request('PUT', 'bedrock-agent', path, {})


    def get_ingestion_job(self, knowledge_base_id: str, data_source_id: str, ingestion_job_id: str):
        path = f'knowledgebases/{quote_path_param(knowledge_base_id)}/datasources/{quote_path_param(data_source_id)}/ingestionjobs/{quote_path_param(ingestion_job_id)}'

        return self.request('GET', 'bedrock-agent', path)


    def data_source_s3_location(self, knowledge_base_id: str):
        """
        The S3 bucket and prefix behind the first data source of a knowledge base.

        Parameters
        ----------
        knowledge_base_id : str
            The knowledge base id.

        Returns
        -------
        tuple of (bucket, prefix), or None if the knowledge base has no S3 data source
        """
        resp = self.list_data_sources(knowledge_base_id)
        resp.raise_for_status()

        summaries = resp.json().get('dataSourceSummaries') or []
        if not summaries:
            return None

        data_source_id = summaries[0]['dataSourceId']
        logger.debug('Using data source %s of knowledge base %s', data_source_id, knowledge_base_id)

        resp = self.get_data_source(knowledge_base_id, data_source_id)
        resp.raise_for_status()

        s3_config = resp.json().get('dataSource', {}).get('dataSourceConfiguration', {}).get('s3Configuration')
        if not s3_config or 'bucketArn' not in s3_config:
            return None

        bucket, prefix = utils.parse_bucket_arn(s3_config['bucketArn'])
        inclusion_prefixes = s3_config.get('inclusionPrefixes')
        if inclusion_prefixes:
            prefix = inclusion_prefixes[0]

        return bucket, prefix
