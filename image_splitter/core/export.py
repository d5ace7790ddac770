import io
import re
import zipfile

_WHITESPACE = re.compile(r'\s+')
_UNSAFE = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def sanitize_label(label: str) -> str:
    value = _WHITESPACE.sub('_', label or '')
    return _UNSAFE.sub('_', value)


def export_filename(label: str, asset_id: str) -> str:
    return f'{sanitize_label(label)}_{asset_id[:4]}.jpg'


def build_archive(assets) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode='w', compression=zipfile.ZIP_STORED) as archive:
        for asset in assets:
            archive.writestr(asset.filename, asset.data)
    return buffer.getvalue()
