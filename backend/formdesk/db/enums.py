import enum


class FieldType(str, enum.Enum):
    text = "text"
    textarea = "textarea"
    email = "email"
    number = "number"
    date = "date"
    select = "select"
    picklist = "picklist"
    checkbox = "checkbox"
    file = "file"
    barcode = "barcode"
    linked_submission = "linkedSubmission"


# Types whose value must be one of Field.options (when options are set)
CHOICE_FIELD_TYPES = {FieldType.select, FieldType.picklist}

ANONYMOUS_SUBMITTER = "anonymous"
