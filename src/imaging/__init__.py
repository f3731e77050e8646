# Imaging Package

import re
import unicodedata


def sanitize_filename(filename: str) -> str:
    """Sanitize an attachment filename for use in a storage path."""
    if not filename:
        return "document.pdf"

    # Provider filenames arrive decoded but may carry compatibility forms and control characters
    filename = unicodedata.normalize('NFKC', filename)
    filename = ''.join(char for char in filename if char.isprintable())
    filename = filename.replace(' ', '_')

    invalid_chars = '<>:"/\\|?*[](){}!@#$%^&+=`~;,\'\"'
    for char in invalid_chars:
        filename = filename.replace(char, '')

    filename = re.sub(r'_{2,}', '_', filename)
    filename = filename.strip('_.')

    if not filename:
        return "document.pdf"

    if len(filename) > 100:
        stem, dot, ext = filename.rpartition('.')
        if dot and len(ext) <= 10:
            filename = stem[:99 - len(ext)] + '.' + ext
        else:
            filename = filename[:100]

    return filename
