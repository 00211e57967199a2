# Services layer for shipment orchestration
