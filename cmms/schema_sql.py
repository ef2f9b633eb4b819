SCHEMA_SQL = '''
CREATE TABLE IF NOT EXISTS machine (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    model TEXT NOT NULL,
    manufacturer TEXT NOT NULL,
    serial_number TEXT NOT NULL,
    installation_date TEXT NOT NULL,
    location TEXT,
    description TEXT,
    image_url TEXT,
    status TEXT NOT NULL DEFAULT 'operational'
        CHECK (status IN ('operational','maintenance','down','decommissioned')),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS parts (
    id INTEGER PRIMARY KEY,
    part_number TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    description TEXT,
    category TEXT NOT NULL,
    unit_cost REAL NOT NULL DEFAULT 0 CHECK (unit_cost >= 0),
    unit_of_measure TEXT NOT NULL DEFAULT 'pcs',
    min_stock_level INTEGER NOT NULL DEFAULT 0 CHECK (min_stock_level >= 0),
    reorder_point INTEGER NOT NULL DEFAULT 0 CHECK (reorder_point >= 0),
    reorder_quantity INTEGER NOT NULL DEFAULT 0 CHECK (reorder_quantity >= 0),
    lead_time_days INTEGER NOT NULL DEFAULT 0 CHECK (lead_time_days >= 0),
    supplier_part_number TEXT,
    specifications TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS part_inventory (
    id INTEGER PRIMARY KEY,
    part_id INTEGER NOT NULL UNIQUE,
    quantity_on_hand INTEGER NOT NULL DEFAULT 0 CHECK (quantity_on_hand >= 0),
    quantity_reserved INTEGER NOT NULL DEFAULT 0 CHECK (quantity_reserved >= 0),
    quantity_available INTEGER NOT NULL DEFAULT 0,
    location TEXT,
    last_counted_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (part_id) REFERENCES parts(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS maintenance_records (
    id INTEGER PRIMARY KEY,
    machine_id INTEGER NOT NULL,
    work_order_number TEXT NOT NULL UNIQUE,
    maintenance_type TEXT NOT NULL CHECK (maintenance_type IN ('corrective','preventive','predictive')),
    priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low','medium','high','critical')),
    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open','in_progress','completed','cancelled')),
    failure_description TEXT,
    root_cause TEXT,
    corrective_action TEXT,
    labor_hours REAL CHECK (labor_hours IS NULL OR labor_hours >= 0),
    downtime_hours REAL CHECK (downtime_hours IS NULL OR downtime_hours >= 0),
    cost REAL CHECK (cost IS NULL OR cost >= 0),
    parts_replaced TEXT,
    reported_by TEXT,
    assigned_to TEXT,
    reported_date TEXT NOT NULL DEFAULT (datetime('now')),
    started_at TEXT,
    completed_at TEXT,
    next_maintenance_date TEXT,
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (machine_id) REFERENCES machine(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS maintenance_parts_used (
    id INTEGER PRIMARY KEY,
    maintenance_record_id INTEGER NOT NULL,
    part_id INTEGER NOT NULL,
    quantity_used INTEGER NOT NULL DEFAULT 1 CHECK (quantity_used > 0),
    cost_per_unit REAL NOT NULL DEFAULT 0,
    total_cost REAL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (maintenance_record_id) REFERENCES maintenance_records(id) ON DELETE CASCADE,
    FOREIGN KEY (part_id) REFERENCES parts(id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS preventive_schedules (
    id INTEGER PRIMARY KEY,
    machine_id INTEGER NOT NULL,
    schedule_name TEXT NOT NULL,
    description TEXT,
    frequency_type TEXT NOT NULL CHECK (frequency_type IN ('daily','weekly','monthly','quarterly','yearly')),
    frequency_value INTEGER NOT NULL DEFAULT 1 CHECK (frequency_value >= 1),
    next_due_date TEXT NOT NULL,
    last_performed_date TEXT,
    assigned_to TEXT,
    estimated_duration_hours REAL,
    checklist_items TEXT,      -- lista JSON de strings
    is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (machine_id) REFERENCES machine(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sensor_readings (
    id INTEGER PRIMARY KEY,
    machine_id INTEGER NOT NULL,
    sensor_name TEXT NOT NULL,
    sensor_type TEXT NOT NULL,
    reading_value REAL NOT NULL,
    unit TEXT NOT NULL,
    threshold_min REAL,
    threshold_max REAL,
    is_alarm INTEGER NOT NULL DEFAULT 0 CHECK (is_alarm IN (0,1)),
    reading_timestamp TEXT NOT NULL DEFAULT (datetime('now')),
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY (machine_id) REFERENCES machine(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS vendors (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    contact_person TEXT,
    email TEXT,
    phone TEXT,
    address TEXT,
    website TEXT,
    notes TEXT,
    is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS purchase_orders (
    id INTEGER PRIMARY KEY,
    po_number TEXT NOT NULL UNIQUE,
    part_id INTEGER,
    vendor_id INTEGER,
    order_date TEXT NOT NULL,
    expected_delivery_date TEXT,
    actual_delivery_date TEXT,
    quantity INTEGER NOT NULL CHECK (quantity > 0),
    unit_price REAL NOT NULL CHECK (unit_price >= 0),
    total_price REAL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','ordered','delivered','cancelled')),
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT,
    FOREIGN KEY (part_id) REFERENCES parts(id) ON DELETE RESTRICT,
    FOREIGN KEY (vendor_id) REFERENCES vendors(id) ON DELETE RESTRICT
);

CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY,
    alert_type TEXT NOT NULL,
    severity TEXT NOT NULL DEFAULT 'info' CHECK (severity IN ('info','warning','critical')),
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    related_entity_type TEXT,
    related_entity_id INTEGER,
    is_read INTEGER NOT NULL DEFAULT 0 CHECK (is_read IN (0,1)),
    is_resolved INTEGER NOT NULL DEFAULT 0 CHECK (is_resolved IN (0,1)),
    resolved_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS data_ledger (
    id INTEGER PRIMARY KEY,
    ts TEXT NOT NULL DEFAULT (datetime('now')),
    table_name TEXT NOT NULL,
    action TEXT NOT NULL,      -- INSERT / UPDATE / DELETE
    row_id INTEGER,
    actor_user_id INTEGER,
    actor_username TEXT,
    details TEXT
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    password_salt TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('admin','technician','viewer')),
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS user_session (
    token TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    expires_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_records_status ON maintenance_records(status);
CREATE INDEX IF NOT EXISTS idx_records_type ON maintenance_records(maintenance_type);
CREATE INDEX IF NOT EXISTS idx_parts_used_record ON maintenance_parts_used(maintenance_record_id);
CREATE INDEX IF NOT EXISTS idx_schedules_due ON preventive_schedules(next_due_date);
CREATE INDEX IF NOT EXISTS idx_readings_ts ON sensor_readings(reading_timestamp);
CREATE INDEX IF NOT EXISTS idx_readings_sensor ON sensor_readings(sensor_name);
CREATE INDEX IF NOT EXISTS idx_po_status ON purchase_orders(status);
CREATE INDEX IF NOT EXISTS idx_alerts_resolved ON alerts(is_resolved);
CREATE INDEX IF NOT EXISTS idx_ledger_table ON data_ledger(table_name);
CREATE INDEX IF NOT EXISTS idx_ledger_actor ON data_ledger(actor_user_id);
CREATE INDEX IF NOT EXISTS idx_user_session_user ON user_session(user_id);

-- Append-only guard
CREATE TRIGGER IF NOT EXISTS forbid_delete_machine
BEFORE DELETE ON machine
BEGIN
  SELECT RAISE(ABORT, 'DELETE prohibido: la máquina es única (machine)');
END;

-- Vista de partes con su inventario
CREATE VIEW IF NOT EXISTS v_parts_stock AS
SELECT
  p.*,
  i.id AS inventory_id,
  i.quantity_on_hand,
  i.quantity_reserved,
  i.quantity_available,
  i.location AS inventory_location,
  i.last_counted_at
FROM parts p
LEFT JOIN part_inventory i ON i.part_id = p.id;

-- Vista para listado de órdenes de compra
CREATE VIEW IF NOT EXISTS v_purchase_list AS
SELECT
  po.*,
  p.part_number,
  p.name AS part_name,
  v.name AS vendor_name
FROM purchase_orders po
LEFT JOIN parts p ON p.id = po.part_id
LEFT JOIN vendors v ON v.id = po.vendor_id;
''';
