"""
核心层：契约（事件/Job/Plan）、错误分类、分类器、规划器、执行循环与 coordinator。

说明：
- 本包不做聚合导出，按子模块导入（避免 core ↔ tools 之间的导入环）。
"""
