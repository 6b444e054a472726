"""
返利规则常量：列名 & 阈值

注意：
- ORDER_* 为订单表表头（第 0 行），必须逐字匹配；
- RULE_* 为挂网底价表表头（默认第 4 行），挂网底价 / 挂网价 两列按包含关系识别，
  其余按精确文本识别；
- EXPORT_COLUMNS + OUTPUT_HEADERS 决定导出表的列顺序。
"""

# =========================
# ① 订单表列名
# =========================
ORDER_DATE = "出库时间"
ORDER_NO = "销售单号"
CUST_TYPE = "客户性质"
PROD_CODE = "商品编码"
QTY = "销售数量"
SALE_PRICE = "销售单价/积分"
PAY_AMT = "支付金额"
RECHARGE = "充值抵扣"
REBATE_DEDUCT = "返利抵扣"
DISCOUNT = "全部优惠金额"
COUPON = "优惠券优惠"

# =========================
# ② 规则表
# =========================
RULE_SHEET_NAME = "返利匹配规则"
RULE_HEADER_ROW = 4

RULE_CODE = "商品编码"
RULE_RANGE = "区间规则"
RULE_REBATE = "返利"
RULE_MIN_QTY = "起购数量"
RULE_CHAIN_MIN = "连锁起购量"
RULE_SINGLE_MIN = "单体起购量"
RULE_IS_BOMB = "是否爆品"
RULE_GIFT_ALLOW = "赠品是否参与返利"
RULE_START_DATE = "生效开始日期"
RULE_END_DATE = "生效结束日期"

# 挂网底价：同时包含这两个片段；挂网价：包含 RULE_NET_PRICE_TOKEN 且不含“底价”
RULE_FLOOR_PRICE_TOKENS = ("挂网", "底价")
RULE_NET_PRICE_TOKEN = "挂网价"

YES = "是"
NO = "否"

# =========================
# ③ 数值阈值
# =========================
GIFT_PRICE = 0.01
GIFT_TOLERANCE = 0.001
PRICE_TOLERANCE = 0.001

DEFAULT_CHAIN_MIN = 300
DEFAULT_SINGLE_MIN = 120
BOMB_TOP_N = 3

# 客户性质包含任一关键字 → 连锁/批发
CHAIN_KEYWORDS = ("连锁", "批发")

# =========================
# ④ 导出列
# =========================
EXPORT_COLUMNS = [
    "出库时间", "签收时间", "销售单号", "外部单号", "订单类型",
    "客户编码", "客户名称", "所属主店", "管理机构", "客户性质",
    "商品编码", "通用名", "销售数量", "销售单价/积分",
    "支付金额", "充值抵扣",
]

OUTPUT_HEADERS = [
    "结算单价", "优惠券优惠", "全部优惠金额", "返利抵扣", "挂网价",
    "挂网底价", "单个返利金额", "是否返利", "返利金额", "不返利原因",
]

RESULT_SHEET_NAME = "返利结果"
