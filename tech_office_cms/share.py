"""
Access to the office network share that holds the case folders.

Paths handed to a share client are share-relative and use backslashes. A
client is opened for a single request and closed when that request is done:

    with open_share(share_factory) as share:
        share.put(path, data)
"""
import errno
import logging
import os
from contextlib import contextmanager
from typing import List

import smbclient
from smbprotocol.exceptions import SMBException

from .errors import StorageError
from .utils import split_share_path

logger = logging.getLogger(__name__)


class ShareClient:
    """Interface implemented by the share backends"""

    def put(self, path: str, data: bytes):
        raise NotImplementedError

    def get(self, path: str) -> bytes:
        raise NotImplementedError

    def list(self, path: str) -> List[str]:
        raise NotImplementedError

    def mkdir(self, path: str):
        """Create one directory; an existing directory is not an error"""
        raise NotImplementedError

    def close(self):
        pass


class SMBShareClient(ShareClient):
    """
    SMB2/3 share accessed through ``smbclient``. Each instance keeps its own
    connection cache so closing it tears down exactly its connections.
    """

    def __init__(self, host: str, share: str, username: str = None, password: str = None,
                 domain: str = 'WORKGROUP', timeout: int = 30):
        if not host or not share:
            raise StorageError("Network share is not configured (NAS_HOST / NAS_SHARE)")
        self.host = host
        self.share = share
        self.connection_cache = {}
        if username and domain and '\\' not in username:
            username = f"{domain}\\{username}"
        self.session_kwargs = {
            'username': username,
            'password': password,
            'connection_timeout': timeout,
            'connection_cache': self.connection_cache,
        }
        try:
            smbclient.register_session(host, **self.session_kwargs)
        except Exception as e:
            self.close()
            raise StorageError(f"Cannot connect to share \\\\{host}\\{share}: {str(e)}") from e

    @contextmanager
    def _smb_errors(self, operation: str, path: str):
        try:
            yield
        except SMBException as e:
            logger.error(f"SMB {operation} failed for {path}: {str(e)}")
            raise StorageError(f"Share operation failed: {str(e)}") from e

    def _unc(self, path: str) -> str:
        relative = '\\'.join(split_share_path(path))
        base = f"\\\\{self.host}\\{self.share}"
        return f"{base}\\{relative}" if relative else base

    def put(self, path: str, data: bytes):
        with self._smb_errors('put', path):
            with smbclient.open_file(self._unc(path), mode='wb', **self.session_kwargs) as fd:
                fd.write(data)

    def get(self, path: str) -> bytes:
        with self._smb_errors('get', path):
            with smbclient.open_file(self._unc(path), mode='rb', **self.session_kwargs) as fd:
                return fd.read()

    def list(self, path: str) -> List[str]:
        with self._smb_errors('list', path):
            return smbclient.listdir(self._unc(path), **self.session_kwargs)

    def mkdir(self, path: str):
        with self._smb_errors('mkdir', path):
            try:
                smbclient.mkdir(self._unc(path), **self.session_kwargs)
            except OSError as e:
                if e.errno != errno.EEXIST:
                    raise

    def close(self):
        smbclient.reset_connection_cache(fail_on_error=False, connection_cache=self.connection_cache)


class LocalShareClient(ShareClient):
    """The share mounted as (or emulated by) a local directory"""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _local(self, path: str) -> str:
        return os.path.join(self.root, *split_share_path(path))

    def put(self, path: str, data: bytes):
        with open(self._local(path), 'wb') as f:
            f.write(data)

    def get(self, path: str) -> bytes:
        with open(self._local(path), 'rb') as f:
            return f.read()

    def list(self, path: str) -> List[str]:
        return sorted(os.listdir(self._local(path)))

    def mkdir(self, path: str):
        try:
            os.mkdir(self._local(path))
        except FileExistsError:
            pass


def share_client_from_config(config) -> ShareClient:
    """Build a share client for the configured backend"""
    backend = (config.get('NAS_BACKEND') or 'smb').lower()
    if backend == 'local':
        return LocalShareClient(config.get('NAS_LOCAL_ROOT') or './share')
    if backend == 'smb':
        return SMBShareClient(
            host=config.get('NAS_HOST'),
            share=config.get('NAS_SHARE'),
            username=config.get('NAS_USERNAME'),
            password=config.get('NAS_PASSWORD'),
            domain=config.get('NAS_DOMAIN') or 'WORKGROUP',
        )
    raise StorageError(f"Unknown share backend: {backend}")


@contextmanager
def open_share(factory):
    """
    Open a share client for the duration of a block and always close it.

    OS level failures inside the block are reported as StorageError; the
    SMB client already reports protocol failures that way.
    """
    client = factory()
    try:
        yield client
    except OSError as e:
        logger.error(f"Share operation failed: {str(e)}")
        raise StorageError(str(e)) from e
    finally:
        client.close()
