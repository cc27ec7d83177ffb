"""
API 層：FastAPI routers，只負責把 HTTP 請求轉給 QueueCoordinator
"""
