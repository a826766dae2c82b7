# 外部协作方：支付网关、通知
