"""Tool schemas for MCP server.

Defines JSON Schema for each tool's input parameters.
"""

_DATABASE = {
    "type": "string",
    "description": "Optional database name (defaults to POSTGRES_DB)"
}

_SCHEMA = {
    "type": "string",
    "description": "Schema name (default: public)"
}

_FORMAT = {
    "type": "string",
    "enum": ["json", "csv"],
    "description": "Data format (default: json)"
}

TOOL_SCHEMAS = {
    "ping": {
        "description": "Health check - verify server is running",
        "inputSchema": {
            "type": "object",
            "properties": {},
            "required": []
        }
    },

    "execute_sql": {
        "description": "Execute a SQL query on the PostgreSQL database. Row-returning statements "
                       "return rows as objects; other statements return the command status.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "SQL query to execute"
                },
                "parameters": {
                    "type": "array",
                    "description": "Positional parameters bound to $1, $2, ..."
                },
                "database": _DATABASE
            },
            "required": ["query"]
        }
    },

    "list_tables": {
        "description": "List all user tables with schema, owner and index/trigger flags",
        "inputSchema": {
            "type": "object",
            "properties": {"database": _DATABASE},
            "required": []
        }
    },

    "describe_table": {
        "description": "Get column definitions, total size and row count of a table",
        "inputSchema": {
            "type": "object",
            "properties": {
                "table_name": {
                    "type": "string",
                    "description": "Table name, optionally schema-qualified (schema.table)"
                },
                "schema": _SCHEMA,
                "database": _DATABASE
            },
            "required": ["table_name"]
        }
    },

    "create_database": {
        "description": "Create a new PostgreSQL database",
        "inputSchema": {
            "type": "object",
            "properties": {
                "database_name": {
                    "type": "string",
                    "description": "Name of the database to create"
                },
                "owner": {
                    "type": "string",
                    "description": "Optional owning role"
                }
            },
            "required": ["database_name"]
        }
    },

    "create_user": {
        "description": "Create a new PostgreSQL login role",
        "inputSchema": {
            "type": "object",
            "properties": {
                "username": {"type": "string", "description": "Role name"},
                "password": {"type": "string", "description": "Role password"},
                "superuser": {
                    "type": "boolean",
                    "description": "Grant SUPERUSER (default: false)",
                    "default": False
                }
            },
            "required": ["username", "password"]
        }
    },

    "export_schema": {
        "description": "Export table and column definitions of a database as JSON, "
                       "optionally saving them to a file under the file server base directory",
        "inputSchema": {
            "type": "object",
            "properties": {
                "database": {"type": "string", "description": "Database to export"},
                "output_file": {
                    "type": "string",
                    "description": "Optional output path relative to the file server base directory"
                }
            },
            "required": ["database"]
        }
    },

    "import_data": {
        "description": "Import JSON or CSV records into an existing table. "
                       "All rows are inserted in one transaction; any failure rolls back the import.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "table_name": {"type": "string", "description": "Target table"},
                "data": {
                    "type": "string",
                    "description": "JSON array of objects, or CSV text with a header row"
                },
                "format": _FORMAT,
                "schema": _SCHEMA,
                "delimiter": {
                    "type": "string",
                    "description": "CSV delimiter (default: ,)",
                    "default": ","
                },
                "database": _DATABASE
            },
            "required": ["table_name", "data"]
        }
    },

    "export_data": {
        "description": "Export table rows as JSON records or CSV text",
        "inputSchema": {
            "type": "object",
            "properties": {
                "table_name": {"type": "string", "description": "Table to export"},
                "format": _FORMAT,
                "schema": _SCHEMA,
                "limit": {
                    "type": "integer",
                    "description": "Maximum rows to export (default: 1000)",
                    "default": 1000
                },
                "database": _DATABASE
            },
            "required": ["table_name"]
        }
    },

    "list_databases": {
        "description": "List all non-template databases with owner and encoding",
        "inputSchema": {
            "type": "object",
            "properties": {},
            "required": []
        }
    },

    "execute_transaction": {
        "description": "Execute several SQL statements in one transaction; "
                       "any failure rolls back all of them",
        "inputSchema": {
            "type": "object",
            "properties": {
                "queries": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "SQL statements to run in order"
                },
                "database": _DATABASE
            },
            "required": ["queries"]
        }
    },

    "drop_database": {
        "description": "Drop a PostgreSQL database (system databases are refused)",
        "inputSchema": {
            "type": "object",
            "properties": {
                "database_name": {
                    "type": "string",
                    "description": "Database to drop"
                },
                "force": {
                    "type": "boolean",
                    "description": "Terminate open sessions on the database first (default: false)"
                }
            },
            "required": ["database_name"]
        }
    },

    "drop_user": {
        "description": "Drop a PostgreSQL role",
        "inputSchema": {
            "type": "object",
            "properties": {
                "username": {
                    "type": "string",
                    "description": "Role to drop"
                }
            },
            "required": ["username"]
        }
    },

    "grant_privileges": {
        "description": "Grant table privileges (when table is given) or database privileges to a role",
        "inputSchema": {
            "type": "object",
            "properties": {
                "username": {
                    "type": "string",
                    "description": "Role receiving the privileges"
                },
                "privileges": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Privileges such as SELECT, INSERT, CONNECT or ALL"
                },
                "database": {
                    "type": "string",
                    "description": "Database to grant on, or the database holding the table"
                },
                "table": {
                    "type": "string",
                    "description": "Table to grant on, optionally schema-qualified"
                },
                "schema": _SCHEMA
            },
            "required": ["username", "privileges"]
        }
    },

    "create_table_from_json": {
        "description": "Create a table from a JSON-schema definition: each property becomes a column "
                       "(string formats date/date-time/time/email/uuid, maxLength, integer, number, "
                       "boolean, array/object as JSONB); optional primary_key",
        "inputSchema": {
            "type": "object",
            "properties": {
                "table_name": {
                    "type": "string",
                    "description": "Table to create, optionally schema-qualified"
                },
                "json_schema": {
                    "type": ["object", "string"],
                    "description": "Object (or JSON text) with 'properties' and optional 'primary_key'"
                },
                "schema": _SCHEMA,
                "database": _DATABASE
            },
            "required": ["table_name", "json_schema"]
        }
    },

    "log_accomplishment": {
        "description": "Log something completed during a work session",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": {"type": "string", "description": "Session identifier"},
                "repository": {"type": "string", "description": "Repository name"},
                "title": {"type": "string", "description": "Short title"},
                "accomplishment_type": {
                    "type": "string",
                    "description": "feature, bugfix, refactor, docs, ... (default: feature)"
                },
                "description": {"type": "string", "description": "Details"},
                "success_level": {
                    "type": "string",
                    "description": "completed, partial or attempted (default: completed)"
                },
                "files_created": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Files created"
                },
                "files_modified": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Files modified"
                },
                "commit_hash": {"type": "string", "description": "Related commit"}
            },
            "required": ["session_id", "repository", "title"]
        }
    },

    "note_next_step": {
        "description": "Record a follow-up task for a work session",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": {"type": "string", "description": "Session identifier"},
                "title": {"type": "string", "description": "Short title"},
                "repository": {"type": "string", "description": "Repository name"},
                "step_type": {"type": "string", "description": "task, bug, research, ... (default: task)"},
                "description": {"type": "string", "description": "Details"},
                "priority": {
                    "type": "string",
                    "enum": ["critical", "high", "medium", "low"],
                    "description": "Priority (default: medium)"
                },
                "estimated_effort": {"type": "string", "description": "Rough effort estimate"}
            },
            "required": ["session_id", "title"]
        }
    },

    "get_session_status": {
        "description": "Get a session's accomplishments (newest first) and next steps "
                       "(ordered critical, high, medium, low)",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": {"type": "string", "description": "Session identifier"},
                "include_accomplishments": {"type": "boolean", "default": True},
                "include_next_steps": {"type": "boolean", "default": True},
                "repository_filter": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Only include these repositories"
                }
            },
            "required": ["session_id"]
        }
    },

    "connection_status": {
        "description": "Show the database host currently in use, recovery counters and pool occupancy",
        "inputSchema": {
            "type": "object",
            "properties": {},
            "required": []
        }
    },

    "discover_hosts": {
        "description": "List candidate database host addresses in the order recovery would try them",
        "inputSchema": {
            "type": "object",
            "properties": {},
            "required": []
        }
    },

    "recover_connection": {
        "description": "Force a database host recovery pass and persist any new host",
        "inputSchema": {
            "type": "object",
            "properties": {},
            "required": []
        }
    },

    "list_directory": {
        "description": "List files and directories under the file server base directory",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory path relative to the base directory (default: .)"
                }
            },
            "required": []
        }
    },

    "read_file": {
        "description": "Read a text file under the file server base directory",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the base directory"},
                "max_size": {
                    "type": "integer",
                    "description": "Maximum file size in bytes (default: 10000)",
                    "default": 10000
                }
            },
            "required": ["path"]
        }
    },

    "write_file": {
        "description": "Write a text file under the file server base directory",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the base directory"},
                "content": {"type": "string", "description": "File content"},
                "overwrite": {
                    "type": "boolean",
                    "description": "Replace an existing file (default: false)",
                    "default": False
                }
            },
            "required": ["path", "content"]
        }
    },

    "create_directory": {
        "description": "Create a directory (and parents) under the file server base directory",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path relative to the base directory"}
            },
            "required": ["path"]
        }
    },

    "delete_file": {
        "description": "Delete a file or directory tree under the file server base directory",
        "inputSchema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path relative to the base directory"}
            },
            "required": ["path"]
        }
    },
}
