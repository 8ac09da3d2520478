"""会话状态层。

- store: 不可变快照式的会话存储。
- correlator: 本地会话与远端会话 ID 的映射及文件缓存。
- persistence: 按用户命名空间的会话列表读写。
- controller: 唯一修改上述状态的协调组件。
"""
