# OpenSearch index mapping for trade-log partitions

TRADE_LOG_INDEX_MAPPING = {
	"mappings": {
		"properties": {
			"date_time_unix_millis": {"type": "date", "format": "epoch_millis"},
			"trader_id": {"type": "keyword"},
			"account_id": {"type": "keyword"},
			"component": {"type": "keyword"},
			"process_id": {"type": "keyword"},
			"operation_id": {"type": "keyword"},
			"env_source": {"type": "keyword"},
			"message": {"type": "keyword"},
		},
		"dynamic_templates": [
			{
				"dyn_text_fields": {
					"match": "dyn_*",
					"mapping": {
						"type": "text",
						"term_vector": "with_positions_offsets",
					}
				}
			}
		]
	}
}
