"""Code-fence language normalization"""

import re


SPLIT_RE = re.compile(r'[\s|,:;]+')
INVALID_RE = re.compile(r'[^a-z0-9+#._-]')

LANGUAGE_ALIASES: dict[str, str] = {
    'js':     'javascript',
    'jsx':    'javascript',
    'mjs':    'javascript',
    'cjs':    'javascript',
    'ts':     'typescript',
    'tsx':    'typescript',
    'py':     'python',
    'py3':    'python',
    'sh':     'bash',
    'zsh':    'bash',
    'shell':  'bash',
    'yml':    'yaml',
    'md':     'markdown',
    'rb':     'ruby',
    'rs':     'rust',
    'golang': 'go',
    'kt':     'kotlin',
    'ps1':    'powershell',
    'c++':    'cpp',
    'cs':     'csharp',
    'c#':     'csharp',
}


def normalize_language(info: str | None) -> str | None:
    """Return a lowercase language token with aliases applied, or None."""
    if not info:
        return None
    head = SPLIT_RE.split(info.strip().lower(), maxsplit=1)[0]
    lang = INVALID_RE.sub('', head)
    if not lang:
        return None
    return LANGUAGE_ALIASES.get(lang, lang)
