"""
Ness - static site deployment orchestrator for AWS.

This package drives the CloudFormation stacks (domain, web, alias) that host a
static website and publishes the site assets to the web stack's bucket.
"""

__version__ = "0.1.0"
__author__ = "Ness"
