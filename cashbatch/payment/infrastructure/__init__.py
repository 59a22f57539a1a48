"""Infrastructure: persistence, ERP queries and export files."""
