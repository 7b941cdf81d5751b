"""Backend adapters: PostgreSQL, MySQL, SQLite"""
