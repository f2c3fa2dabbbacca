"""Gateway services: multi-step writes over RecordRepository"""
