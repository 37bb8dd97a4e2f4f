"""Feed monitoring: parse RSS/Atom and HTML listings, diff against stored state, deliver."""
