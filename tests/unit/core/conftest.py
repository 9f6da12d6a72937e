"""Shared fixtures for core unit tests"""

import pytest

from mdstream.core.lexer import Lexer
from mdstream.core.parser import BlockParser


SAMPLE_MD = """\
# Heading 1

A paragraph with **bold** text and $x^2$ math.

## Heading 2

- item one
- item two

```python
print("hello")
```

> quoted

---

Footer paragraph.
"""


@pytest.fixture(name="lexer")
def lexer_fixture():
    return Lexer("gfm-like")


@pytest.fixture(name="parser")
def parser_fixture():
    return BlockParser("gfm-like")


@pytest.fixture(name="sample_md")
def sample_md_fixture():
    return SAMPLE_MD
