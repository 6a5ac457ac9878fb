import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import yaml

from csv2json import Csv2JsonError, DEFAULT_INITIAL_LIST_CAPACITY, FORMAT_DEFAULT

logger = logging.getLogger(__name__)

ENVVAR_DEFAULT_FORMAT = "CSV2JSON_DEFAULT_FORMAT"
ENVVAR_INITIAL_VECTOR_CAPACITY = "CSV2JSON_INITIAL_VECTOR_CAPACITY"

CONFIG_KEYS = ("format", "allow_anomalies", "pretty", "initial_list_capacity")


class ConfigError(Csv2JsonError, ValueError):
    pass


@dataclass(frozen=True)
class ConvertOptions:
    format: str = FORMAT_DEFAULT
    allow_anomalies: bool = False
    pretty: bool = False
    initial_list_capacity: int = DEFAULT_INITIAL_LIST_CAPACITY


def parse_capacity(value: Any, source: str) -> int:
    """
    初期容量ヒントを正の整数として解釈する。
    解釈できない場合は警告を出し、既定値（1024）を返す。
    """
    capacity = None
    if isinstance(value, str):
        try:
            capacity = int(value.strip())
        except ValueError:
            capacity = None
    elif isinstance(value, int) and not isinstance(value, bool):
        capacity = value

    if capacity is None or capacity <= 0:
        logger.warning("%s value of %r could not be parsed as a positive integer; defaulting to %d",
                       source, value, DEFAULT_INITIAL_LIST_CAPACITY)
        return DEFAULT_INITIAL_LIST_CAPACITY
    return capacity


def load_config_file(path: str) -> Dict[str, Any]:
    """
    YAML 形式の設定ファイルを読み込み、設定値の辞書を返す。
    例:
        format: list-of-maps
        allow_anomalies: true
        pretty: false
        initial_list_capacity: 256
    """
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: YAML として読み込めません: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: 設定ファイルの最上位はマッピングである必要があります")

    unknown = sorted(str(key) for key in data if key not in CONFIG_KEYS)
    if unknown:
        raise ConfigError(f"{path}: 未知の設定項目があります: {', '.join(unknown)}")

    if "format" in data and not isinstance(data["format"], str):
        raise ConfigError(f"{path}: format は文字列で指定してください")
    for key in ("allow_anomalies", "pretty"):
        if key in data and not isinstance(data[key], bool):
            raise ConfigError(f"{path}: {key} は true / false で指定してください")
    return data


def resolve_options(format_name: Optional[str] = None,
                    allow_anomalies: bool = False,
                    pretty: bool = False,
                    config_path: Optional[str] = None,
                    environ: Optional[Mapping[str, str]] = None) -> ConvertOptions:
    """
    コマンドライン > 環境変数 > 設定ファイル > 既定値 の優先順で設定を決定する。
    """
    if environ is None:
        environ = os.environ
    file_values = load_config_file(config_path) if config_path else {}

    if format_name is None:
        format_name = environ.get(ENVVAR_DEFAULT_FORMAT)
    if format_name is None:
        format_name = file_values.get("format", FORMAT_DEFAULT)

    if ENVVAR_INITIAL_VECTOR_CAPACITY in environ:
        capacity = parse_capacity(environ[ENVVAR_INITIAL_VECTOR_CAPACITY], ENVVAR_INITIAL_VECTOR_CAPACITY)
    elif "initial_list_capacity" in file_values:
        capacity = parse_capacity(file_values["initial_list_capacity"],
                                  f"{config_path}: initial_list_capacity")
    else:
        capacity = DEFAULT_INITIAL_LIST_CAPACITY

    return ConvertOptions(
        format=format_name,
        allow_anomalies=allow_anomalies or file_values.get("allow_anomalies", False),
        pretty=pretty or file_values.get("pretty", False),
        initial_list_capacity=capacity,
    )
