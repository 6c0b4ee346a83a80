"""
boto3 session construction.
"""

from typing import Optional

import boto3
from botocore.exceptions import ProfileNotFound

from ..config import DEFAULT_REGION
from ..errors import ConfigurationError


def create_session(profile: Optional[str] = None, region: str = DEFAULT_REGION) -> boto3.Session:
    """
    Create a boto3 session for the given named profile.

    Raises:
        ConfigurationError: If the profile does not exist
    """
    try:
        return boto3.Session(profile_name=profile, region_name=region)
    except ProfileNotFound as e:
        raise ConfigurationError(str(e))
