"""流式响应管线。

- decoder: 把字节流切成 ServerEvent。
- think_filter: 过滤 <think> 推理块，计算可显示的增量。
- aggregator: 驱动一轮远端调用，产出 TurnEvent。
"""
