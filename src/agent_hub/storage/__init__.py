"""SQLite persistence shared by the job store, feed state and conversation memory."""
