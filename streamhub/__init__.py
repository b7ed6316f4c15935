"""StreamHub —— 私人直播后台：直播管理、令牌观看与实时聊天。"""
