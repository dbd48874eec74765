"""
Skyblock 数据解析服务
读穿式数据解析层：本地存储 → TTL 缓存（含失败负缓存）→ 上游 HTTP 数据源

架构分层：
  数据获取层 (Acquisition)  → 身份查询源 / 档案数据源
  缓存层     (Cache)        → 内存 TTL 缓存，成功与失败双命名空间
  处理层     (Processing)   → 上游响应结构校验
  分析层     (Analysis)     → 等级、令牌预算、资源三元组
"""

__version__ = "1.0.0"
