"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理 QueueEntry 的狀態轉換
- Coordinator：唯一可以修改 Stand / QueueEntry 的地方
- Store：資料庫讀寫
- Locks：並發控制工具
"""
