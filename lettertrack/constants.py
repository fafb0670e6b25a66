"""Static reference data shared by the list view and the bulk importer."""

PAGE_SIZE_OPTIONS = (25, 50, 100, 200)

# Days before a deadline for the "urgent" quick filter.
URGENT_DAYS = 3

PRIORITY_DEFAULT = 50
PRIORITY_HIGH = 70
PRIORITY_MEDIUM = 40

SUGGESTIONS_LIMIT = 6
RECENT_SEARCHES_LIMIT = 6
RECENT_SEARCH_MIN_LENGTH = 2
AUTOCOMPLETE_LIMIT = 3

SEARCH_DEBOUNCE_SECONDS = 0.3
SUGGESTIONS_DEBOUNCE_SECONDS = 0.25

# Batch-create endpoint limits.
BULK_MAX_LETTERS = 100
NUMBER_MAX_LENGTH = 50
ORG_MAX_LENGTH = 500
CONTENT_MAX_LENGTH = 10000

# Bulk import accepts a single document type.
IMPORT_ACCEPTED_SUFFIX = ".pdf"

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

# Categories offered in the type picker. Values are the stored strings.
LETTER_TYPES: tuple[str, ...] = (
    "Баг",
    "Закрытие больничного листа",
    "Запрос на внедрение",
    "Запрос на интеграцию",
    "Запрос на обучение",
    "Запрос на получение доступов",
    "Запрос на получение информации",
    "Изменение данных",
    "Изменение данных в истории болезни",
    "Открытие Аптек",
    "Очистка склада",
    "Подключение PACS и ЛИС",
    "подключение частных клиник",
    "Тикет",
    "Удаление Д-учета",
    "Удаление осмотра",
    "Удаление скрининга",
    "Удаление счета",
    "Удаление учёта по беременности",
    "Удаление/изменение диагноза",
    "Фикс багов Медкарты",
)

# Keyword → organization hints used when extraction returns no organization.
ORGANIZATION_HINTS: dict[str, tuple[str, ...]] = {
    "DMED": ("dmed", "дмед"),
    "Минздрав": ("минздрав", "minzdrav", "ssv", "ссв"),
    "Хокимият": ("хокимият", "hokimiyat", "hokim"),
    "Прокуратура": ("прокуратура", "prokuratura"),
    "Налоговая": ("налог", "soliq", "gni"),
}
