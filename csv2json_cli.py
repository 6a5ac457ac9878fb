import argparse
import logging
import sys
from contextlib import nullcontext
from typing import List, Optional

from csv2json import (
    FORMAT_NAME_LIST_OF_MAPS,
    FORMAT_NAME_MAP_OF_LISTS,
    Csv2JsonConverter,
    Csv2JsonError,
    to_json_str,
)
from csv2json_config import ENVVAR_DEFAULT_FORMAT, resolve_options

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="csv2json",
        description="CSV を読み込み、JSON（list-of-maps / map-of-lists）を出力します。"
    )
    parser.add_argument(
        "-f", "--format", dest="format",
        help=f'JSON の形式。"{FORMAT_NAME_LIST_OF_MAPS}" または "{FORMAT_NAME_MAP_OF_LISTS}"'
             f"（lom / mol / l / m も可。省略時は環境変数 {ENVVAR_DEFAULT_FORMAT}、なければ "
             f"{FORMAT_NAME_MAP_OF_LISTS}）"
    )
    parser.add_argument("-i", "--in", dest="input_file", help="入力 CSV ファイル（省略時は標準入力）")
    parser.add_argument("-o", "--out", dest="output_file", help="出力 JSON ファイル（省略時は標準出力）")
    parser.add_argument("-a", "--allow-anomalies", action="store_true",
                        help="列数が合わない行を警告のみで許容する")
    parser.add_argument("-p", "--pretty", action="store_true", help="JSON を整形して出力する")
    parser.add_argument("-c", "--config", help="YAML 形式の設定ファイル")
    parser.add_argument("-v", "--verbose", action="store_true", help="デバッグログを出力する")
    return parser


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def open_input(input_file: Optional[str]):
    if input_file is None:
        return nullcontext(sys.stdin)
    # 改行コードは変換せずに渡し、トークン側で取り除く
    return open(input_file, 'r', encoding='utf-8', newline='')


def write_output(output_file: Optional[str], json_str: str) -> None:
    """
    変換済みの JSON 文字列を一度に書き出す。出力先はここで初めて開く。
    """
    if output_file is None:
        sys.stdout.write(json_str)
        sys.stdout.flush()
        return
    with open(output_file, 'w', encoding='utf-8', newline='') as f:
        f.write(json_str)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        options = resolve_options(
            format_name=args.format,
            allow_anomalies=args.allow_anomalies,
            pretty=args.pretty,
            config_path=args.config,
        )
        converter = Csv2JsonConverter.from_options(options)
        with open_input(args.input_file) as stream:
            result = converter.convert(stream)
        json_str = to_json_str(result, options.pretty)
        write_output(args.output_file, json_str)
    except Csv2JsonError as e:
        logger.error("%s", e)
        return 1
    except (OSError, UnicodeDecodeError) as e:
        logger.error("入出力エラー: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
