"""
数据流分层架构
  Layer 1 – Acquisition  : 上游数据获取（身份查询 / 档案数据）
  Layer 2 – Cache        : 内存 TTL 缓存（成功 / 失败双命名空间）
  Layer 3 – Processing   : 响应结构校验
  Layer 4 – Analysis     : 派生指标计算
"""
