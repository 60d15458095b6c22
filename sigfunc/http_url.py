#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Created on Tue Mar 10 10:12:51 2026

@author: mike
"""
import urllib3
from urllib3.util import Retry, Timeout

#######################################################
### Parameters

# Throttling and transient server errors from S3 and Bedrock
retry_statuses = (429, 500, 502, 503, 504)

connect_timeout = 10

#######################################################
### Functions


def session(max_pool_connections: int = 10, max_attempts: int=3, read_timeout: int=120):
    """
    Pool manager shared by the signed AWS sessions. A retry re-sends the already signed headers, which AWS accepts for 15 minutes after the signing time.

    Parameters
    ----------
    max_pool_connections : int
        The number of connection pools to keep (one per host).
    max_attempts: int
        The number of retries on connection errors and throttling.
    read_timeout: int
        The read timeout in seconds.

    Returns
    -------
    urllib3.PoolManager
    """
    # The last error response is returned rather than raised so it reaches Response.error
    retries = Retry(
        total=max_attempts,
        backoff_factor=1,
        status_forcelist=retry_statuses,
        raise_on_status=False,
        )

    return urllib3.PoolManager(num_pools=max_pool_connections, timeout=Timeout(connect=connect_timeout, read=read_timeout), retries=retries)
