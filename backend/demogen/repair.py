"""
LLM出力（途中で切れたJSON）のベストエフォート修復。

- 末尾の切断だけを扱う。途中の破損は直さない（パーサではない）
- csvData の途中で切れた場合は、最後の完全な行（エスケープされた改行）まで戻して閉じる
"""

import json
import re

_CSV_DATA_OPEN = re.compile(r'"csvData"\s*:\s*"')

_CLOSERS = {"{": "}", "[": "]"}


def _is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except (ValueError, TypeError):
        return False
    return True


def _find_string_end(text: str, start: int) -> int:
    """start（開きクォートの直後）から、閉じクォートの位置を返す。見つからなければ -1。"""
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return i
        i += 1
    return -1


def _truncate_open_csv_data(text: str) -> str:
    matches = list(_CSV_DATA_OPEN.finditer(text))
    if not matches:
        return text

    valueStart = matches[-1].end()
    if _find_string_end(text, valueStart) != -1:
        return text

    value = text[valueStart:]
    lastNewline = value.rfind("\\n")
    # "\\n"（エスケープされたバックスラッシュ + n）は改行ではない
    while lastNewline > 0 and _count_trailing_backslashes(value, lastNewline) % 2 == 1:
        lastNewline = value.rfind("\\n", 0, lastNewline)

    if lastNewline == -1:
        # ヘッダ行すら完結していない
        return text[:valueStart] + '"'
    return text[: valueStart + lastNewline + 2] + '"'


def _count_trailing_backslashes(value: str, end: int) -> int:
    count = 0
    i = end - 1
    while i >= 0 and value[i] == "\\":
        count += 1
        i -= 1
    return count


def repair_truncated_json(text: str) -> str:
    """
    目的: 途中で切れたJSON文字列を、パース可能な形に補う。
    - すでに正しいJSONならそのまま返す（冪等）
    - 文字列の途中で終わっていれば閉じクォートを補う
    - 閉じていない [ / { をネストの逆順に閉じる（配列は外側のオブジェクトの内側にある）
    """
    if _is_valid_json(text):
        return text

    repaired = _truncate_open_csv_data(text)

    inString = False
    escaped = False
    stack: list[str] = []
    for ch in repaired:
        if inString:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                inString = False
            continue

        if ch == '"':
            inString = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]"):
            if stack and _CLOSERS[stack[-1]] == ch:
                stack.pop()

    if inString:
        if escaped:
            # 末尾の孤立したバックスラッシュは閉じクォートをエスケープしてしまう
            repaired = repaired[:-1]
        repaired += '"'
    elif stack:
        # 要素の直後で切れた場合の末尾カンマは閉じられないので落とす
        repaired = repaired.rstrip()
        if repaired.endswith(","):
            repaired = repaired[:-1]

    return repaired + "".join(_CLOSERS[ch] for ch in reversed(stack))
