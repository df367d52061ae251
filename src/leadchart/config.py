"""leadchart 配置

配置分为以下几类：
- 解释器配置：内存中流转日志长度
- 队列配置：每个 lead 的 Actor 队列参数
- 持久化配置：快照文件位置与版本
- 日志/指标配置
"""

import os
from pathlib import Path

# === 解释器配置 ===
TRANSITION_LOG_MAX_LENGTH = 30  # 内存中流转记录最大长度（不持久化）

# === Actor 队列配置 ===
QUEUE_MAX_SIZE = 256  # 队列最大长度
QUEUE_HIGH_WATERMARK = 0.75  # 高水位阈值（打印 debug 日志）
PROTECTED_EVENTS = {
    "deal.closed",
    "goal.hit",
    "conversation.stopped",
    "lead.opted_out",
}  # 不可丢弃事件

# === 持久化配置 ===
PERSIST_DIR = Path(os.environ.get("LEADCHART_STATE_DIR", "~/.leadchart")).expanduser()
PERSIST_FILE = PERSIST_DIR / "leads.json"
PERSIST_VERSION = 1

# 快照损坏时的恢复策略: "reset" = 重新 start(), "reject" = 跳过该 lead
CORRUPT_SNAPSHOT_POLICY = os.environ.get("LEADCHART_CORRUPT_SNAPSHOT_POLICY", "reset")

# === 日志配置 ===
LOG_LEVEL = os.environ.get("LEADCHART_LOG_LEVEL", "INFO")  # 日志级别

# === 指标配置 ===
METRICS_ENABLED = True  # 是否启用指标收集
