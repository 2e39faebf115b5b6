"""
CLIツール共通の「I/Oまわり」部品集（toolkit）

狙い：
- accesslog 本体は「数える・問い合わせる」に集中させる
- 設定の読み込み（.env / 環境変数 / JSON config）、logger、HTTP POST はここに寄せる

注意：
- ここに置くのは「どのツールでも同じ意味で使えるもの」だけ
- 環境変数の名前や payload の形はツール側（accesslog.py）が持つ
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import httpx


def parse_provided_options(argv: list[str] | None) -> set[str]:
    """
    CLIで明示された --option の集合を返す。

    config/env は「未指定の項目を埋める」だけにしたいので、
    何が明示されたかを argparse とは別に控えておく。
    """
    if argv is None:
        return set()
    provided: set[str] = set()
    for token in argv:
        if token == "--":
            break
        if token.startswith("--"):
            provided.add(token.split("=", 1)[0])
    return provided


def parse_bool(value: str) -> bool:
    """
    文字列を bool にする（env は全部文字列で来る）。

    true: 1, true, yes, y, on
    false: 0, false, no, n, off, 空文字
    """
    v = value.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"", "0", "false", "no", "n", "off"}:
        return False
    return bool(v)


def load_env_file(path: Path, logger: logging.Logger) -> dict[str, str]:
    """
    KEY=VALUE 形式の .env を読む。

    - 空行と # コメントは無視
    - `export KEY=VALUE` も受け付ける
    - 値を囲むクォート（' "）は外す
    - `=` がない行は読み飛ばす

    読めなかったら logger.error を出して空 dict を返す。
    """
    try:
        text = path.expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("env file load failed: %s (%s)", path, exc)
        return {}

    env: dict[str, str] = {}
    for row in text.splitlines():
        line = row.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        key, sep, val = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        val = val.strip()
        if len(val) >= 2 and val[0] == val[-1] and val[0] in {'"', "'"}:
            val = val[1:-1]
        if key:
            env[key] = val
    logger.info("env file loaded: %s (%d keys)", path, len(env))
    return env


def get_env(name: str, env_file: dict[str, str]) -> str | None:
    """
    環境変数を引く。.env（--env-file）に値があればそちらを優先する。
    空文字は「未設定」と同じ扱い。
    """
    v = env_file.get(name)
    if v:
        return v
    v = os.getenv(name)
    if v:
        return v
    return None


def load_json_config(path: Path, logger: logging.Logger) -> dict[str, Any]:
    """
    JSON設定ファイル（トップレベルはオブジェクト）を読む。

    壊れたconfigで落とさない：読めない/形が違うなら logger.error を出して {} を返す。
    """
    try:
        data = json.loads(path.expanduser().read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.error("config load failed: %s (%s)", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.error("config must be a JSON object: %s", path)
        return {}
    return data


def setup_logger(name: str, verbose: bool) -> logging.Logger:
    """
    stderr に出す logger を構成する。

    stdout は集計結果（表 / JSON）専用にしたいので、進捗や警告はこちらへ。
    何度呼んでもハンドラが増えないように毎回 clear する。
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False

    logger.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(handler)
    return logger


def post_json(url: str, payload: dict[str, Any], timeout: float, logger: logging.Logger) -> bool:
    """
    payload を JSON で POST する。

    成否は stderr のログで報告し、呼び出し側には True/False だけ返す
    （終了コードを決めるのは main の仕事）。
    """
    try:
        with httpx.Client(timeout=timeout) as client:
            resp = client.post(url, json=payload)
    except httpx.HTTPError as exc:
        logger.error("HTTP POST failed: %s (%s)", url, exc)
        return False

    logger.info("POST %s -> %d", url, resp.status_code)
    if resp.status_code >= 400:
        logger.warning("response body (truncated): %s", resp.text[:200])
        return False
    return True
