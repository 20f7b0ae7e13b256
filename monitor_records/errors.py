"""
错误类型定义

结构性错误（查询、事务）会中止整次运行；单条汇总记录保存失败只记录日志。
"""


class RecordsError(Exception):
    """所有记录相关错误的基类"""


class ConfigError(RecordsError):
    """层级表或保留表配置无效"""


class StoreQueryError(RecordsError):
    """读取记录存储失败，中止当前事务"""


class RecordSaveError(RecordsError):
    """写入单条汇总记录失败"""


class RecordDeleteError(RecordsError):
    """删除过期记录失败，中止保留任务的事务"""


class TransactionAbortError(RecordsError):
    """事务被回滚或提交失败，本次运行的所有写入均已撤销"""
