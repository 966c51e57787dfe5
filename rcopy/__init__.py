"""
rcopy - remote file copy over a streaming RPC protocol
"""

__version__ = '0.1.0'
