"""
accesslog のエントリーポイント（薄いラッパー）

狙い：
- import される「実装本体」(accesslog.py) と、CLI実行の「入口」を分ける
- テストは accesslog.py を直接 import する（import しただけでは何も読まない）
"""

from __future__ import annotations

import sys

if __name__ == "__main__":
    from accesslog import main

    raise SystemExit(main(sys.argv[1:]))
