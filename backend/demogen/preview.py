from .schemas import TablePreview, TableSpec

PREVIEW_ROW_LIMIT = 5


def parse_csv_line(line: str) -> list[str]:
    """
    目的: CSVの1行をフィールドのリストに分解する（プレビュー表示用の簡易パーサ）。
    - ダブルクォートで「クォート内」モードを切り替え、その間のカンマは区切りとして扱わない
    - "" によるクォートのエスケープは非対応（" は常にモードを切り替えるだけ）
    - 各フィールドは前後の空白を除去する
    """
    fields: list[str] = []
    current: list[str] = []
    inQuotes = False
    for ch in line:
        if ch == '"':
            inQuotes = not inQuotes
        elif ch == "," and not inQuotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    fields.append("".join(current).strip())
    return fields


def split_csv_lines(csv_data: str) -> list[str]:
    return [line for line in csv_data.replace("\r\n", "\n").split("\n") if line.strip()]


def build_table_preview(table: TableSpec, *, limit: int = PREVIEW_ROW_LIMIT) -> TablePreview:
    lines = split_csv_lines(table.csv_data)
    if not lines:
        return TablePreview(table_name=table.name, headers=[], rows=[])

    headers = parse_csv_line(lines[0])
    rows = []
    for line in lines[1 : 1 + limit]:
        values = parse_csv_line(line)
        # 列数が合わない行は、足りない分を空文字で埋める
        rows.append({h: (values[i] if i < len(values) else "") for i, h in enumerate(headers)})
    return TablePreview(table_name=table.name, headers=headers, rows=rows)


def build_data_preview(tables: list[TableSpec], *, limit: int = PREVIEW_ROW_LIMIT) -> list[TablePreview]:
    return [build_table_preview(t, limit=limit) for t in tables]
