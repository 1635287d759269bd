"""OSS request handlers for osslite."""
