# escrow_app/config/feature_flags.py
# Escrow Feature Flags (ops convenience)

FEATURE_FLAGS = {
    # 배송완료 후 기한 경과 주문 자동 정산 워커 (main.py lifespan)
    "ENABLE_AUTO_RELEASE_WORKER": True,
    # 커밋 후 Discord 웹훅 알림 (DISCORD_WEBHOOK_URL 필요)
    "ENABLE_DISCORD_NOTIFY": True,
    # 주문 생성 시 바우처 적용 허용
    "ENABLE_VOUCHERS": True,
}
