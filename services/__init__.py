"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換：
- CapacityPolicy：判斷 join / leave / complete / uncomplete 是否允許
- SnapshotService：組合攤位狀態的唯讀快照
"""
