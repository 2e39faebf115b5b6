"""
accesslog: Webサーバのアクセスログを「時間帯 / 日 / 月」ごとに数える小ツール

何をするツール？
- アクセスログを1行ずつ読み、hour(0-23) / day(1-31) / month(1-12) を取り出す
- 24 / 31 / 12 マスのカウンタに数え上げる
- 合計、月平均、いちばん混む / 空いている時間帯・日・月を出す

構成：
- LogEntry / LogfileReader: ログを読んで「エントリの列」にする側（入力）
- LogAnalyzer: カウンタを持ち、読み切って数え、問い合わせに答える側（集計）
- main: CLI / env / config を解決して、表示 or JSON を出す（I/O境界）

入力フォーマット（--format）：
- weblog: `year month day hour minute` の空白区切り（例: `2015 06 01 14 22`）
- apache: Apache common/combined 形式。`[10/Oct/2000:13:55:36 -0700]` から時刻を取る

設定の優先順位：
  CLI > env（OS環境変数 / --env-file） > config（JSON）
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

import toolkit

LOGGER_NAME = "accesslog"

HOURS = 24
DAYS = 31
MONTHS = 12

FORMATS = ("weblog", "apache")


# -------------------------
# データモデル（DTO）
# -------------------------


@dataclass(frozen=True)
class LogEntry:
    """
    アクセス1件ぶん。

    hour / day / month の範囲はここで保証する（読む側の責任）。
    LogAnalyzer はこの保証を前提に、範囲チェックなしで添字に使う。
    """

    hour: int
    day: int
    month: int
    year: int | None = None
    minute: int | None = None
    raw: str = ""

    def __post_init__(self) -> None:
        if not 0 <= self.hour < HOURS:
            raise ValueError(f"hour out of range (0-23): {self.hour}")
        if not 1 <= self.day <= DAYS:
            raise ValueError(f"day out of range (1-31): {self.day}")
        if not 1 <= self.month <= MONTHS:
            raise ValueError(f"month out of range (1-12): {self.month}")


@dataclass
class AccessSummary:
    """
    集計結果DTO（問い合わせ結果をまとめたもの）。

    busiest_day / busiest_month などは LogAnalyzer と同じく 0始まりの添字。
    表示やJSONで 1始まりのラベルにするのは出力側の仕事。
    """

    total_accesses: int
    average_accesses_per_month: int
    busiest_hour: int
    quietest_hour: int
    busiest_two_hours: int
    busiest_day: int
    quietest_day: int
    busiest_month: int
    quietest_month: int
    hour_counts: list[int]
    day_counts: list[int]
    month_counts: list[int]


# -------------------------
# 行の解釈（副作用なし）
# -------------------------

_APACHE_TS_RE = re.compile(r"\[(?P<ts>\d{2}/[A-Za-z]{3}/\d{4}:\d{2}:\d{2}:\d{2})(?:\s+[+-]\d{4})?\]")


def parse_weblog_line(line: str) -> LogEntry:
    """
    `year month day hour minute` 形式の1行を LogEntry にする。

    6列目以降は無視する。列が足りない / 数字でないときは ValueError。
    """
    parts = line.split()
    if len(parts) < 5:
        raise ValueError(f"expected 'year month day hour minute', got {len(parts)} field(s)")
    year, month, day, hour, minute = (int(p) for p in parts[:5])
    return LogEntry(hour=hour, day=day, month=month, year=year, minute=minute, raw=line)


def parse_apache_line(line: str) -> LogEntry:
    """
    Apache common/combined 形式の1行から時刻を取り出す。

    タイムゾーン（-0700 など）は変換せず、ログに書かれた現地時刻のまま数える。
    """
    m = _APACHE_TS_RE.search(line)
    if not m:
        raise ValueError("no [dd/Mon/yyyy:HH:MM:SS] timestamp found")
    ts = datetime.strptime(m.group("ts"), "%d/%b/%Y:%H:%M:%S")
    return LogEntry(hour=ts.hour, day=ts.day, month=ts.month, year=ts.year, minute=ts.minute, raw=line)


_PARSERS: dict[str, Callable[[str], LogEntry]] = {
    "weblog": parse_weblog_line,
    "apache": parse_apache_line,
}


def parse_lines(lines: Iterable[str], fmt: str, source: str = "<memory>") -> Iterator[LogEntry]:
    """
    行の列から LogEntry を順に yield する。空行は飛ばす。

    壊れた行は読み飛ばさない：`source:行番号` を付けた ValueError を投げる。
    """
    try:
        parse = _PARSERS[fmt]
    except KeyError:
        raise ValueError(f"unknown format: {fmt!r} (choose from {', '.join(FORMATS)})") from None

    for lineno, line in enumerate(lines, 1):
        s = line.rstrip("\r\n")
        if not s.strip():
            continue
        try:
            yield parse(s)
        except ValueError as exc:
            raise ValueError(f"{source}:{lineno}: {exc}") from exc


# -------------------------
# 入力（I/O境界）
# -------------------------


class LogfileReader:
    """
    ログのエントリを先頭から順に1件ずつ渡すリーダー。

    構築時にソース全体を読み込んでメモリに持つ（stdin も同じ）。
    勝手に巻き戻ることはないので、読み切ったあとは has_next() が False のまま。
    もう一度読みたいときは reset() を明示的に呼ぶ。
    """

    def __init__(self, entries: Iterable[LogEntry], source: str = "<memory>") -> None:
        self.source = source
        self._entries = list(entries)
        self._pos = 0

    @classmethod
    def open(cls, path: str | Path, fmt: str = "weblog") -> LogfileReader:
        """ファイル（'-' なら stdin）を読む。開けなければ OSError、壊れた行があれば ValueError。"""
        if str(path) == "-":
            return cls.from_lines(sys.stdin.read().splitlines(), fmt, source="-")
        p = Path(path).expanduser()
        text = p.read_text(encoding="utf-8", errors="replace")
        return cls.from_lines(text.splitlines(), fmt, source=str(p))

    @classmethod
    def from_lines(cls, lines: Iterable[str], fmt: str = "weblog", source: str = "<memory>") -> LogfileReader:
        return cls(parse_lines(lines, fmt, source=source), source=source)

    @classmethod
    def from_entries(cls, entries: Iterable[LogEntry]) -> LogfileReader:
        return cls(entries)

    def has_next(self) -> bool:
        return self._pos < len(self._entries)

    def next(self) -> LogEntry:
        if not self.has_next():
            raise StopIteration
        entry = self._entries[self._pos]
        self._pos += 1
        return entry

    def __iter__(self) -> Iterator[LogEntry]:
        return self

    def __next__(self) -> LogEntry:
        return self.next()

    def reset(self) -> None:
        self._pos = 0

    @property
    def consumed(self) -> int:
        """前回の reset() 以降に渡したエントリ数。"""
        return self._pos

    def __len__(self) -> int:
        return len(self._entries)

    def print_data(self) -> None:
        """読み込んだ元の行をそのまま stdout に出す（診断用）。"""
        for entry in self._entries:
            print(entry.raw)


# -------------------------
# 集計（コアロジック）
# -------------------------


def _index_of_max(counts: list[int]) -> int:
    # 同点なら先に見つけた方（小さい添字）
    busiest = 0
    for i in range(1, len(counts)):
        if counts[i] > counts[busiest]:
            busiest = i
    return busiest


def _index_of_min(counts: list[int]) -> int:
    quietest = 0
    for i in range(1, len(counts)):
        if counts[i] < counts[quietest]:
            quietest = i
    return quietest


class LogAnalyzer:
    """
    アクセス数を時間帯(24) / 日(31) / 月(12) のカウンタに数えるクラス。

    使い方：
        analyzer = LogAnalyzer("demo.log")
        analyzer.analyze()
        analyzer.busiest_hour()

    注意（1パス問題）：
    - analyze*() はリーダーに残っているエントリを読み切る
    - リーダーは勝手に巻き戻らないので、analyze_hourly() のあとに analyze_daily() を呼ぶと
      2回目は「残り」（ふつうは0件）しか見ない。別々に数えたいなら間で reader.reset() を呼ぶ
    - 読み途中のリーダーでパスを始めると WARNING を出す（直しはしない）
    """

    def __init__(
        self,
        source: str | Path | LogfileReader,
        fmt: str = "weblog",
        logger: logging.Logger | None = None,
    ) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        if isinstance(source, LogfileReader):
            self.reader = source
        else:
            self.reader = LogfileReader.open(source, fmt)
        self._hour_counts = [0] * HOURS
        self._day_counts = [0] * DAYS
        self._month_counts = [0] * MONTHS

    # --- 読み込みパス ---

    def _drain(self, hourly: bool, daily: bool, monthly: bool) -> int:
        if self.reader.consumed:
            self.logger.warning(
                "log source %s was already read (%d of %d entries); this pass only sees the remainder."
                " call reader.reset() to re-read from the start",
                self.reader.source,
                self.reader.consumed,
                len(self.reader),
            )
        n = 0
        while self.reader.has_next():
            entry = self.reader.next()
            if hourly:
                self._hour_counts[entry.hour] += 1
            if daily:
                self._day_counts[entry.day - 1] += 1
            if monthly:
                self._month_counts[entry.month - 1] += 1
            n += 1
        self.logger.info(
            "analysis pass done: %d entries (hourly=%s daily=%s monthly=%s)", n, hourly, daily, monthly
        )
        return n

    def analyze(self) -> int:
        """残りのエントリを読み切り、3種類のカウンタを全部数える。読んだ件数を返す。"""
        return self._drain(hourly=True, daily=True, monthly=True)

    def analyze_hourly(self) -> int:
        return self._drain(hourly=True, daily=False, monthly=False)

    def analyze_daily(self) -> int:
        return self._drain(hourly=False, daily=True, monthly=False)

    def analyze_monthly(self) -> int:
        return self._drain(hourly=False, daily=False, monthly=True)

    # --- カウンタ（読み取り専用のコピー） ---

    @property
    def hour_counts(self) -> list[int]:
        return list(self._hour_counts)

    @property
    def day_counts(self) -> list[int]:
        return list(self._day_counts)

    @property
    def month_counts(self) -> list[int]:
        return list(self._month_counts)

    # --- 問い合わせ ---

    def total_accesses(self) -> int:
        """時間帯カウンタの合計。時間帯を数えるパスがまだなら 0。"""
        return sum(self._hour_counts)

    def average_accesses_per_month(self) -> int:
        """
        月カウンタの合計を 12 で割った値（切り捨て）。

        割るのは「データがある月の数」ではなく常に 12。
        """
        return sum(self._month_counts) // MONTHS

    def busiest_hour(self) -> int:
        return _index_of_max(self._hour_counts)

    def quietest_hour(self) -> int:
        return _index_of_min(self._hour_counts)

    def busiest_two_hours(self, legacy: bool = False) -> int:
        """
        連続する2時間（h と h+1）の合計がいちばん多い開始時刻 h を返す。

        23時の相方は 0時（(h + 1) % 24 で回り込む）。

        legacy=False: 24通りの本当の最大。同点なら小さい h。
        legacy=True: 旧実装の挙動そのまま。基準は (23, 0) の合計で固定のまま更新しないので、
            「基準を超えた最後の h」が返る（どれも超えなければ 23）。
        """
        counts = self._hour_counts
        pairs = [counts[h] + counts[(h + 1) % HOURS] for h in range(HOURS)]
        if not legacy:
            return _index_of_max(pairs)

        busiest = HOURS - 1
        baseline = pairs[HOURS - 1]
        for hour in range(HOURS):
            if pairs[hour] > baseline:
                busiest = hour
        return busiest

    def busiest_day(self) -> int:
        """いちばん多い日の添字（0始まり。日付としては +1）。"""
        return _index_of_max(self._day_counts)

    def quietest_day(self) -> int:
        return _index_of_min(self._day_counts)

    def busiest_month(self) -> int:
        """いちばん多い月の添字（0始まり。月としては +1）。"""
        return _index_of_max(self._month_counts)

    def quietest_month(self) -> int:
        return _index_of_min(self._month_counts)

    def summary(self, legacy_two_hours: bool = False) -> AccessSummary:
        return AccessSummary(
            total_accesses=self.total_accesses(),
            average_accesses_per_month=self.average_accesses_per_month(),
            busiest_hour=self.busiest_hour(),
            quietest_hour=self.quietest_hour(),
            busiest_two_hours=self.busiest_two_hours(legacy=legacy_two_hours),
            busiest_day=self.busiest_day(),
            quietest_day=self.quietest_day(),
            busiest_month=self.busiest_month(),
            quietest_month=self.quietest_month(),
            hour_counts=self.hour_counts,
            day_counts=self.day_counts,
            month_counts=self.month_counts,
        )

    # --- 表示（stdout） ---

    def print_hourly_counts(self) -> None:
        print("Hr: Count")
        for hour, count in enumerate(self._hour_counts):
            print(f"{hour}: {count}")

    def print_daily_counts(self) -> None:
        print("Day: Count")
        for day, count in enumerate(self._day_counts):
            print(f"{day + 1}: {count}")

    def total_accesses_per_month(self) -> None:
        print("Month: Count")
        for month, count in enumerate(self._month_counts):
            print(f"{month + 1}: {count}")

    def print_data(self) -> None:
        self.reader.print_data()


# -------------------------
# 出力（表示形式の責務）
# -------------------------


def build_json_payload(path: str, fmt: str, summary: AccessSummary) -> dict[str, Any]:
    """
    JSON用の辞書を組み立てる。

    day / month は人が読む前提で 1始まりのラベルにする（hour は 0-23 のまま）。
    """
    return {
        "path": path,
        "format": fmt,
        "total_accesses": summary.total_accesses,
        "average_accesses_per_month": summary.average_accesses_per_month,
        "busiest_hour": summary.busiest_hour,
        "quietest_hour": summary.quietest_hour,
        "busiest_two_hours": [summary.busiest_two_hours, (summary.busiest_two_hours + 1) % HOURS],
        "busiest_day": summary.busiest_day + 1,
        "quietest_day": summary.quietest_day + 1,
        "busiest_month": summary.busiest_month + 1,
        "quietest_month": summary.quietest_month + 1,
        "hour_counts": summary.hour_counts,
        "day_counts": summary.day_counts,
        "month_counts": summary.month_counts,
    }


def print_report(path: str, summary: AccessSummary) -> None:
    start = summary.busiest_two_hours
    print(f"path:           {path}")
    print(f"total:          {summary.total_accesses}")
    print(f"avg/month:      {summary.average_accesses_per_month}")
    print(f"busiest hour:   {summary.busiest_hour}")
    print(f"quietest hour:  {summary.quietest_hour}")
    print(f"busiest 2h:     {start}-{(start + 1) % HOURS}")
    print(f"busiest day:    {summary.busiest_day + 1}")
    print(f"quietest day:   {summary.quietest_day + 1}")
    print(f"busiest month:  {summary.busiest_month + 1}")
    print(f"quietest month: {summary.quietest_month + 1}")


# -------------------------
# CLIパース（I/O境界：入力）
# -------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    CLI引数を定義して解析する。

    ここでは「accesslog が受け取る項目」だけを並べる。
    env/config での補完は resolve_effective_args でやる。
    """
    parser = argparse.ArgumentParser(
        description="Count web-server accesses per hour, day and month.",
        allow_abbrev=False,  # 省略形(--form)だと provided に載らず env/config に負けるので禁止
    )

    parser.add_argument(
        "path",
        nargs="?",
        default=None,  # config/envで埋められるように「未指定(None)」を区別する
        type=Path,
        help="アクセスログのパス（省略時は stdin）。'-' でも stdin 扱い。",
    )
    parser.add_argument(
        "--format",
        default="weblog",
        help="入力フォーマット: weblog（year month day hour minute）/ apache（default: weblog）",
    )
    parser.add_argument("--counts", action="store_true", help="時間帯/日/月ごとの件数表も出す")
    parser.add_argument("--print-data", action="store_true", help="集計前に読み込んだ行をそのまま出す")
    parser.add_argument(
        "--legacy-two-hours",
        action="store_true",
        help="busiest 2h を旧実装の判定（(23,0) の合計を基準に固定）で出す",
    )
    parser.add_argument("--json", action="store_true", help="集計結果をJSONでstdoutに出す")
    parser.add_argument("--verbose", action="store_true", help="処理中の詳細ログをstderrに出す")
    parser.add_argument("--post", type=str, default="", help="集計結果のJSONをPOSTするURL")
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTP POSTのタイムアウト秒数（default: 10.0）")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON config file path (e.g., config.json). CLI args override config.",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from a .env file before processing (e.g., .env).",
    )
    return parser.parse_args(argv)


# -------------------------
# 設定（config / env）
# -------------------------


def _parse_timeout(value: Any, source: str, logger: logging.Logger) -> float | None:
    """
    timeout を float にする。数値にならなければ logger.error を出して None を返す
    （None は validate_args で終了コード 2 になる）。
    """
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.error("invalid timeout from %s: %r", source, value)
        return None


def _as_bool(value: Any) -> bool:
    # config は JSON なので true/false のほかに "false" のような文字列も来る
    if isinstance(value, str):
        return toolkit.parse_bool(value)
    return bool(value)


def apply_config(args: argparse.Namespace, cfg: dict[str, Any], provided: set[str], logger: logging.Logger) -> None:
    """
    configの値を args に反映する（CLIで明示された項目は上書きしない）。

    例：{"path": "access.log", "format": "apache", "counts": true}
    """
    if args.path is None and "path" in cfg:
        args.path = Path(str(cfg["path"]))

    if "--format" not in provided and "format" in cfg:
        args.format = str(cfg["format"])
    if "--timeout" not in provided and "timeout" in cfg:
        args.timeout = _parse_timeout(cfg["timeout"], "config", logger)
    if "--post" not in provided and "post" in cfg:
        args.post = str(cfg["post"])

    for key in ("counts", "json", "verbose", "print_data", "legacy_two_hours"):
        option = "--" + key.replace("_", "-")
        if option not in provided and key in cfg:
            setattr(args, key, _as_bool(cfg[key]))

    logger.info("config applied (CLI overrides config)")


def apply_env(
    args: argparse.Namespace,
    env_file: dict[str, str],
    provided: set[str],
    logger: logging.Logger,
    path_from_cli: bool,
) -> None:
    """
    env の値を args に反映する（CLI > env。config は先に適用済みの前提）。

    対応する環境変数：
      ACCESSLOG_PATH, ACCESSLOG_FORMAT, ACCESSLOG_COUNTS, ACCESSLOG_JSON,
      ACCESSLOG_VERBOSE, ACCESSLOG_POST, ACCESSLOG_TIMEOUT,
      ACCESSLOG_PRINT_DATA, ACCESSLOG_LEGACY_TWO_HOURS
    """
    # 位置引数(path)は argparse の既定値と区別できないので、CLIで渡されたかを別で受け取る
    if not path_from_cli:
        v = toolkit.get_env("ACCESSLOG_PATH", env_file)
        if v:
            args.path = Path(v)

    if "--format" not in provided:
        v = toolkit.get_env("ACCESSLOG_FORMAT", env_file)
        if v:
            args.format = v
    if "--timeout" not in provided:
        v = toolkit.get_env("ACCESSLOG_TIMEOUT", env_file)
        if v:
            args.timeout = _parse_timeout(v, "ACCESSLOG_TIMEOUT", logger)
    if "--post" not in provided:
        v = toolkit.get_env("ACCESSLOG_POST", env_file)
        if v:
            args.post = v

    for key in ("counts", "json", "verbose", "print_data", "legacy_two_hours"):
        if "--" + key.replace("_", "-") not in provided:
            v = toolkit.get_env("ACCESSLOG_" + key.upper(), env_file)
            if v is not None:
                setattr(args, key, toolkit.parse_bool(v))

    logger.info("env applied (CLI overrides env)")


def resolve_effective_args(argv: list[str] | None) -> tuple[argparse.Namespace, logging.Logger]:
    """
    CLI / env / config を統合して、最終的に使う args と logger を返す。

    順番：config（最下位）→ env → CLI は最初から args に入っている。
    """
    args = parse_args(argv)
    path_from_cli = args.path is not None
    provided = toolkit.parse_provided_options(argv)

    # 暫定logger（verbose が env/config で変わったら最後に作り直す）
    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)

    env_file: dict[str, str] = {}
    if args.env_file is not None:
        env_file = toolkit.load_env_file(args.env_file, logger)

    if args.config is None:
        v = toolkit.get_env("ACCESSLOG_CONFIG", env_file)
        if v:
            args.config = Path(v)

    if args.config is not None:
        cfg = toolkit.load_json_config(args.config, logger)
        apply_config(args, cfg, provided, logger)

    apply_env(args, env_file, provided, logger, path_from_cli)

    logger = toolkit.setup_logger(LOGGER_NAME, args.verbose)
    return args, logger


def validate_args(args: argparse.Namespace) -> int:
    """入力検証。だめなら終了コード 2 を返す。"""
    if args.format not in FORMATS:
        print(f"Error: --format は {', '.join(FORMATS)} のどれかです: {args.format}", file=sys.stderr)
        return 2
    if args.timeout is None or args.timeout <= 0:
        print(f"Error: --timeout の値は0より大きい数値である必要があります: {args.timeout}", file=sys.stderr)
        return 2

    if args.path is None or str(args.path) == "-":
        return 0
    p: Path = args.path.expanduser()
    if not p.exists():
        print(f"Error: 指定されたパスが存在しません: {p}", file=sys.stderr)
        return 2
    if not p.is_file():
        print(f"Error: 指定されたパスはファイルではありません: {p}", file=sys.stderr)
        return 2
    return 0


# -------------------------
# 実行フロー
# -------------------------


def main(argv: list[str] | None = None) -> int:
    """
    実行入口（テストからも呼べる形）。

    1) resolve_effective_args / validate_args
    2) LogAnalyzer を作って analyze()（1パスだけ）
    3) 表示 / --json / --post
    """
    if argv is None:
        argv = sys.argv[1:]
    args, logger = resolve_effective_args(argv)

    rc = validate_args(args)
    if rc != 0:
        return rc

    display_path = "-" if args.path is None else str(args.path.expanduser())
    logger.info("read start: path=%s format=%s", display_path, args.format)
    try:
        analyzer = LogAnalyzer(display_path, fmt=args.format, logger=logger)
    except (OSError, ValueError) as exc:
        logger.error("failed to read log: %s (%s)", display_path, exc)
        return 1

    if args.print_data and args.json:
        logger.info("--print-data is ignored with --json (stdout is JSON only)")
    elif args.print_data:
        analyzer.print_data()

    n = analyzer.analyze()
    logger.info("read done: entries=%d", n)

    summary = analyzer.summary(legacy_two_hours=args.legacy_two_hours)
    payload = build_json_payload(display_path, args.format, summary)

    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))

    if args.post:
        ok = toolkit.post_json(args.post, payload, timeout=args.timeout, logger=logger)
        if not ok:
            return 1

    if args.json:
        return 0

    print_report(display_path, summary)
    if args.counts:
        analyzer.print_hourly_counts()
        analyzer.print_daily_counts()
        analyzer.total_accesses_per_month()
    return 0
