"""
Provider layer: EC2 API access via boto3.

One EC2Gateway per region; the client handle is threaded through explicitly.
"""

from ebscrypt.provider.ec2_gateway import EC2Gateway, gateway_for_region, session_for

__all__ = ["EC2Gateway", "gateway_for_region", "session_for"]
