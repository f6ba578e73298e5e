"""xlport: spreadsheet / CSV batch import and SQL result export across SQLite, MySQL, SQL Server, PostgreSQL and Oracle."""

__version__ = "0.1.0"
