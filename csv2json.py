#!/usr/bin/env python
import json
import logging
import sys
from dataclasses import dataclass
from enum import Enum, auto
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DELIMITER = ","
LINE_TERMINATORS = "\r\n"
DEFAULT_INITIAL_LIST_CAPACITY = 1024

FORMAT_NAME_LIST_OF_MAPS = "list-of-maps"
FORMAT_NAME_LIST_OF_MAPS_SHORTENED = "lom"
FORMAT_NAME_MAP_OF_LISTS = "map-of-lists"
FORMAT_NAME_MAP_OF_LISTS_SHORTENED = "mol"

FORMAT_DEFAULT = FORMAT_NAME_MAP_OF_LISTS

HeaderMap = Mapping[int, str]
RowRecord = Dict[str, str]
MapOfLists = Dict[str, List[str]]
ListOfMaps = List[RowRecord]


# ─────────────────────────────
# 例外
# ─────────────────────────────

class Csv2JsonError(Exception):
    pass


class UnknownFormatError(Csv2JsonError, ValueError):
    def __init__(self, format_name: str):
        super().__init__(f"Unknown format string: {format_name}")
        self.format_name = format_name


class AnomalyError(Csv2JsonError):
    pass


class OverflowAnomalyError(AnomalyError):
    def __init__(self, message: str, line_number: int, index: int):
        super().__init__(message)
        self.line_number = line_number
        self.index = index


class UnderflowAnomalyError(AnomalyError):
    def __init__(self, message: str, line_number: int, observed: int, expected: int):
        super().__init__(message)
        self.line_number = line_number
        self.observed = observed
        self.expected = expected


class SerializationError(Csv2JsonError):
    pass


# ─────────────────────────────
# 出力形式の選択
# ─────────────────────────────

class ResultFormat(Enum):
    LIST_OF_MAPS = auto()
    MAP_OF_LISTS = auto()


def _build_format_aliases() -> Dict[str, ResultFormat]:
    """
    正式名・短縮名・先頭1文字の3通りの指定を出力形式に対応付ける。
    """
    aliases = {}
    for name, shortened, result_format in (
        (FORMAT_NAME_LIST_OF_MAPS, FORMAT_NAME_LIST_OF_MAPS_SHORTENED, ResultFormat.LIST_OF_MAPS),
        (FORMAT_NAME_MAP_OF_LISTS, FORMAT_NAME_MAP_OF_LISTS_SHORTENED, ResultFormat.MAP_OF_LISTS),
    ):
        aliases[name] = result_format
        aliases[shortened] = result_format
        aliases[name[0]] = result_format
    return aliases


FORMAT_ALIASES = _build_format_aliases()


def select_format(format_name: str) -> ResultFormat:
    """
    形式指定文字列（大文字小文字を区別）から出力形式を決定する。
    未知の文字列の場合は UnknownFormatError を送出する。
    """
    try:
        return FORMAT_ALIASES[format_name]
    except KeyError:
        raise UnknownFormatError(format_name) from None


# ─────────────────────────────
# 行の分割とヘッダー
# ─────────────────────────────

class LineTokens:
    """
    1行分のテキストを区切り文字で分割したトークン列。
    反復するたびに先頭から分割し直すため、何度でも走査できる。
    """
    def __init__(self, line: str, delimiter: str = DELIMITER):
        self.line = line
        self.delimiter = delimiter

    def __iter__(self) -> Iterator[str]:
        # 改行文字は分割後に各トークンから取り除く
        for token in self.line.split(self.delimiter):
            yield token.rstrip(LINE_TERMINATORS)


def tokenize(line: str) -> LineTokens:
    return LineTokens(line)


def bind_header(tokens: Iterable[str]) -> HeaderMap:
    """
    先頭行のトークンに 0 始まりの列番号を振り、列番号 → 列名 の対応を返す。
    同名の列があってもそのまま保持する（後段で同じキーとして扱われる）。
    """
    header = {index: name for index, name in enumerate(tokens)}
    return MappingProxyType(header)


# ─────────────────────────────
# 異常行の扱い
# ─────────────────────────────

class AnomalyKind(Enum):
    OVERFLOW = "overflow"
    UNDERFLOW = "underflow"


@dataclass(frozen=True)
class Anomaly:
    kind: AnomalyKind
    line_number: int
    index: Optional[int] = None
    observed: Optional[int] = None
    expected: Optional[int] = None

    @property
    def message(self) -> str:
        if self.kind is AnomalyKind.OVERFLOW:
            return f"Found item outside of expected bounds; line: {self.line_number}; index: {self.index}"
        return (f"Line too short; line: {self.line_number}; "
                f"length: {self.observed}; expected: {self.expected}")

    def to_error(self) -> AnomalyError:
        if self.kind is AnomalyKind.OVERFLOW:
            return OverflowAnomalyError(self.message, self.line_number, self.index)
        return UnderflowAnomalyError(self.message, self.line_number, self.observed, self.expected)


class AnomalyPolicy:
    """
    列数の過不足を検出したときの振る舞いを決める。
      - allow_anomalies=True : 警告をログに出し、処理を続行する
      - allow_anomalies=False: 最初の異常で例外を送出する
    """
    def __init__(self, allow_anomalies: bool = False):
        self.allow_anomalies = allow_anomalies
        self.tolerated: List[Anomaly] = []

    def handle(self, anomaly: Anomaly) -> None:
        if not self.allow_anomalies:
            raise anomaly.to_error()
        logger.warning("%s", anomaly.message)
        self.tolerated.append(anomaly)


def align_tokens(tokens: Iterable[str],
                 header: HeaderMap,
                 policy: AnomalyPolicy,
                 line_number: int) -> Iterator[Tuple[str, str]]:
    """
    トークンをヘッダーの列名に対応付け、(列名, 値) を順に返す。
    ヘッダーより多いトークンはトークンごとに、少ない場合は走査後に policy へ渡す。
    """
    count = 0
    for index, token in enumerate(tokens):
        count += 1
        column_name = header.get(index)
        if column_name is None:
            policy.handle(Anomaly(AnomalyKind.OVERFLOW, line_number, index=index))
            continue
        yield column_name, token

    if count < len(header):
        policy.handle(Anomaly(AnomalyKind.UNDERFLOW, line_number,
                              observed=count, expected=len(header)))


# ─────────────────────────────
# 行の蓄積
# ─────────────────────────────

class RowAccumulator:
    """
    list-of-maps 形式：1行につき {列名: 値} の辞書を1つ追加する。
    異常行でも（空であっても）必ず1件追加し、行数とレコード数を一致させる。
    """
    def __init__(self, header: HeaderMap, policy: AnomalyPolicy):
        self.header = header
        self.policy = policy
        self.rows: ListOfMaps = []

    def add_line(self, tokens: Iterable[str], line_number: int) -> None:
        record: RowRecord = {}
        for column_name, value in align_tokens(tokens, self.header, self.policy, line_number):
            record[column_name] = value
        self.rows.append(record)

    @property
    def result(self) -> ListOfMaps:
        return self.rows


class ColumnAccumulator:
    """
    map-of-lists 形式：値を列名ごとのリストに追加する。
    リストは最初の値が来た時点で作るので、値が一つも無い列はキー自体が存在しない。
    """
    def __init__(self, header: HeaderMap, policy: AnomalyPolicy,
                 initial_list_capacity: int = DEFAULT_INITIAL_LIST_CAPACITY):
        self.header = header
        self.policy = policy
        self.initial_list_capacity = initial_list_capacity
        self.columns: MapOfLists = {}

    def add_line(self, tokens: Iterable[str], line_number: int) -> None:
        for column_name, value in align_tokens(tokens, self.header, self.policy, line_number):
            column = self.columns.get(column_name)
            if column is None:
                column = self._new_column(column_name)
            column.append(value)

    def _new_column(self, column_name: str) -> List[str]:
        # list は事前確保できないため、容量はヒントとしてのみ扱う
        logger.debug("列 '%s' を作成します（初期容量ヒント: %d）",
                     column_name, self.initial_list_capacity)
        column: List[str] = []
        self.columns[column_name] = column
        return column

    @property
    def result(self) -> MapOfLists:
        return self.columns


Accumulator = Union[RowAccumulator, ColumnAccumulator]


# ─────────────────────────────
# 変換結果
# ─────────────────────────────

@dataclass(frozen=True)
class ConversionResult:
    format: ResultFormat
    data: Union[MapOfLists, ListOfMaps]

    @classmethod
    def empty(cls, result_format: ResultFormat) -> "ConversionResult":
        if result_format is ResultFormat.LIST_OF_MAPS:
            return cls(result_format, [])
        return cls(result_format, {})

    def to_json(self, pretty: bool = False) -> str:
        return to_json_str(self, pretty)


def to_json_str(result: ConversionResult, pretty: bool = False) -> str:
    """
    変換結果を JSON 文字列にする。
    pretty 指定時は 2 スペースでインデントし、末尾に改行を 1 つ付ける。
    """
    try:
        if pretty:
            return json.dumps(result.data, indent=2, ensure_ascii=False) + "\n"
        return json.dumps(result.data, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"JSON への変換に失敗しました: {e}") from e


# ─────────────────────────────
# 全体の処理
# ─────────────────────────────

class DriverState(Enum):
    AWAITING_HEADER = auto()
    ACCUMULATING_ROWS = auto()
    DONE = auto()


class Csv2JsonConverter:
    """
    入力を1行ずつ読み、先頭行をヘッダー、以降をデータ行として選択した形式に蓄積する。
    先頭行は内容にかかわらず常にヘッダーとして扱う。
    """
    def __init__(self,
                 result_format: ResultFormat,
                 allow_anomalies: bool = False,
                 initial_list_capacity: int = DEFAULT_INITIAL_LIST_CAPACITY):
        self.result_format = result_format
        self.policy = AnomalyPolicy(allow_anomalies)
        self.initial_list_capacity = initial_list_capacity
        self.state = DriverState.AWAITING_HEADER
        self.header: Optional[HeaderMap] = None
        self.accumulator: Optional[Accumulator] = None
        self.line_number = 0

    @classmethod
    def from_options(cls, options) -> "Csv2JsonConverter":
        return cls(select_format(options.format),
                   allow_anomalies=options.allow_anomalies,
                   initial_list_capacity=options.initial_list_capacity)

    def _create_accumulator(self, header: HeaderMap) -> Accumulator:
        if self.result_format is ResultFormat.LIST_OF_MAPS:
            return RowAccumulator(header, self.policy)
        return ColumnAccumulator(header, self.policy, self.initial_list_capacity)

    def feed_line(self, line: str) -> None:
        if self.state is DriverState.DONE:
            raise RuntimeError("変換は既に完了しています")
        self.line_number += 1
        tokens = tokenize(line)
        if self.state is DriverState.AWAITING_HEADER:
            self.header = bind_header(tokens)
            self.accumulator = self._create_accumulator(self.header)
            self.state = DriverState.ACCUMULATING_ROWS
            logger.debug("ヘッダー: %d 列", len(self.header))
        else:
            self.accumulator.add_line(tokens, self.line_number)

    def finish(self) -> ConversionResult:
        self.state = DriverState.DONE
        if self.policy.tolerated:
            logger.info("%d 件の異常行を許容しました", len(self.policy.tolerated))
        if self.accumulator is None:
            return ConversionResult.empty(self.result_format)
        return ConversionResult(self.result_format, self.accumulator.result)

    def convert(self, lines: Iterable[str]) -> ConversionResult:
        """
        行の列（テキストストリームや文字列のリスト）を最後まで読み、変換結果を返す。
        """
        for line in lines:
            self.feed_line(line)
        return self.finish()


def convert(lines: Iterable[str], options) -> str:
    """
    options（ConvertOptions 相当）に従って行の列を変換し、JSON 文字列を返す。
    """
    converter = Csv2JsonConverter.from_options(options)
    return to_json_str(converter.convert(lines), options.pretty)


if __name__ == "__main__":
    from csv2json_cli import main
    sys.exit(main())
