"""
CoachSync Sync Module

Team content synchronization: authoritative server, client cache and the
network client that keeps them in step.
"""

from .content_store import ContentStore, InMemoryContentStore
from .auth import CredentialVerifier, JWTCredentialVerifier, Principal
from .registry import Connection, ConnectionRegistry
from .server import SyncServer
from .client_cache import ClientCache
from .backoff import BackoffPolicy
from .client import SyncClient
from .seed import load_seed, load_seed_file

__all__ = [
    "ContentStore",
    "InMemoryContentStore",
    "CredentialVerifier",
    "JWTCredentialVerifier",
    "Principal",
    "Connection",
    "ConnectionRegistry",
    "SyncServer",
    "ClientCache",
    "BackoffPolicy",
    "SyncClient",
    "load_seed",
    "load_seed_file",
]
