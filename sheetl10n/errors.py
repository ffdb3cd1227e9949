from __future__ import annotations


class Sheetl10nError(Exception):
    pass


class MarkupParseError(Sheetl10nError):
    pass


class RuleSetError(Sheetl10nError):
    pass


class CodecError(Sheetl10nError):
    pass


class InterchangeError(Sheetl10nError):
    pass
