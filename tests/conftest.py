"""Pytest 配置"""

import pytest

from leadchart.lead import create_lead_interpreter
from leadchart.telemetry import metrics


@pytest.fixture(autouse=True)
def reset_metrics():
    """每次测试前重置指标"""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def lead():
    """创建已启动的 lead 解释器"""
    return create_lead_interpreter("lead-test-0001")
