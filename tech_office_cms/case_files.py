import logging
from typing import Callable, Dict, Tuple

from .errors import ValidationError
from .share import ShareClient, open_share
from .utils import ensure_inside_base, join_share_path, sanitize_folder_name, split_share_path

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_NAME = 'upload.bin'


class CaseFiles:
    """
    File operations on a case's folder on the network share.

    Every path is checked before the share is opened, so a folder path with a
    ``..`` segment never reaches the share.
    """

    def __init__(self, share_factory: Callable[[], ShareClient]):
        self.share_factory = share_factory

    def ensure_folder(self, case) -> str:
        folder = ensure_inside_base(case.storage_folder_path)

        with open_share(self.share_factory) as share:
            current = ''
            for segment in split_share_path(folder):
                current = join_share_path(current, segment)
                share.mkdir(current)

        logger.info(f"Ensured folder {folder} for case {case.case_number}")
        return folder

    def list_files(self, case) -> Dict:
        folder = ensure_inside_base(case.storage_folder_path)

        with open_share(self.share_factory) as share:
            names = share.list(folder)

        return {'folder': folder, 'items': [{'name': name} for name in names]}

    def upload(self, case, filename: str, data: bytes) -> str:
        folder = ensure_inside_base(case.storage_folder_path)
        file_name = sanitize_folder_name(filename) or DEFAULT_UPLOAD_NAME
        target = ensure_inside_base(join_share_path(folder, file_name))

        with open_share(self.share_factory) as share:
            share.put(target, data)

        logger.info(f"Stored {file_name} ({len(data)} bytes) in {folder}")
        return file_name

    def download(self, case, name: str) -> Tuple[str, bytes]:
        if not name:
            raise ValidationError("Missing name")

        folder = ensure_inside_base(case.storage_folder_path)
        file_name = sanitize_folder_name(name)
        if not file_name:
            raise ValidationError("Invalid file name")
        target = ensure_inside_base(join_share_path(folder, file_name))

        with open_share(self.share_factory) as share:
            data = share.get(target)

        return file_name, data

    def count_entries(self, relative_folder: str) -> int:
        folder = ensure_inside_base(relative_folder)

        with open_share(self.share_factory) as share:
            return len(share.list(folder))
