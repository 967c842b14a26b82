"""Split a quiz's ordered modules into display pages at page breaks."""
from __future__ import annotations

from collections.abc import Iterable

from quickpoll.models import Page, QuizModule


def split_pages(modules: Iterable[QuizModule]) -> list[Page]:
    pages: list[Page] = []
    current: list[QuizModule] = []
    for m in modules:
        if m.type == "pageBreak":
            if current:
                pages.append(Page(number=len(pages) + 1, modules=current))
                current = []
            continue
        current.append(m)
    if current:
        pages.append(Page(number=len(pages) + 1, modules=current))
    return pages
